import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def seed_catalog(store):
    """Two warehouses, one main category and one stocked item in WH-A."""
    from wis.services.catalog_service import CatalogService

    catalog = CatalogService(store)
    wh_a = catalog.add_warehouse("Main Hub", "WHA", warehouse_id="wh-a")
    wh_b = catalog.add_warehouse("North Depot", "WHB", warehouse_id="wh-b")
    cat = catalog.add_category("Components", "com", category_id="cat-com")
    item = catalog.add_item(
        name="Bearing 6204",
        warehouse_id=wh_a.id,
        category_id=cat.id,
        quantity=20,
        base_cost=4.0,
        freight=0.5,
        duties=0.25,
        taxes=0.25,
        status="FINISHED",
    )
    return catalog, wh_a, wh_b, cat, item


class RecordingReplay:
    """Replay target that remembers every batch and can be told to fail."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.batches = []

    def __call__(self, actions):
        self.batches.append([a.id for a in actions])
        if self.fail:
            raise RuntimeError("remote unavailable")
