import pytest

from superpod_sim.cluster.health import ecc_status, temperature_status
from superpod_sim.cluster.models import ECCErrors
from superpod_sim.cluster.store import ClusterStore
from superpod_sim.cluster.xid import lookup_xid


@pytest.mark.parametrize(
    ("temperature", "expected"),
    [(79, "OK"), (80, "Warning"), (90, "Warning"), (91, "Critical")],
)
def test_temperature_thresholds(temperature: float, expected: str) -> None:
    assert temperature_status(temperature) == expected


def test_single_bit_ecc_threshold() -> None:
    assert ecc_status(ECCErrors(single_bit=100)) == "OK"
    assert ecc_status(ECCErrors(single_bit=101)) == "Warning"


def test_store_applies_the_temperature_boundary(store: ClusterStore) -> None:
    assert store.update_gpu("dgx-node01", 0, temperature=90).health_status == "Warning"
    assert store.update_gpu("dgx-node01", 0, temperature=91).health_status == "Critical"


@pytest.mark.parametrize(
    ("code", "description", "severity"),
    [
        (54, "Hardware Watchdog Timeout", "Critical"),
        (62, "Spurious Host Interrupt", "Informational"),
        (63, "Row Remapping Failure", "Critical"),
        (72, "NVLink Flow Control Error", "Warning"),
        (78, "NVLink ECC Error", "Critical"),
        (79, "GPU has fallen off the bus", "Critical"),
    ],
)
def test_xid_catalogue(code: int, description: str, severity: str) -> None:
    info = lookup_xid(code)
    assert info is not None
    assert info.description == description
    assert info.severity == severity


def test_unknown_xid_is_not_catalogued(store: ClusterStore) -> None:
    assert lookup_xid(150) is None
    error = store.add_xid_error("dgx-node01", 0, 150)
    assert error.description == "Unknown XID 150"
    assert error.severity == "Warning"
