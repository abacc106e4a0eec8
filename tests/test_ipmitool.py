from collections.abc import Callable

from superpod_sim.cluster.store import ClusterStore
from superpod_sim.core.types import CommandResult

Runner = Callable[[str], CommandResult]


def test_sdr_lists_bmc_and_gpu_sensors(run: Runner) -> None:
    result = run("ipmitool sdr")
    assert result.exit_code == 0
    names = [line.split("|")[0].strip() for line in result.output.splitlines()]
    assert "Inlet Temp" in names
    assert "FAN1" in names
    assert "GPU7 Temp" in names
    assert all(line.rstrip().endswith("| ok") for line in result.output.splitlines())


def test_sdr_type_filters_by_unit(run: Runner) -> None:
    lines = run("ipmitool sdr type Temperature").output.splitlines()
    assert lines
    assert all("degrees C" in line for line in lines)
    assert run("ipmitool sdr type voltage").exit_code == 1


def test_hot_gpu_sensor_is_critical(run: Runner, store: ClusterStore) -> None:
    store.update_gpu("dgx-node01", 0, temperature=95)
    line = next(line for line in run("ipmitool sdr type temperature").output.splitlines() if line.startswith("GPU0"))
    assert "95 degrees C" in line
    assert line.endswith("| cr")


def test_sensor_list_shows_thresholds(run: Runner) -> None:
    line = next(line for line in run("ipmitool sensor list").output.splitlines() if line.startswith("GPU0 Temp"))
    assert "80.000" in line
    assert "90.000" in line


def test_chassis_and_power_status(run: Runner) -> None:
    chassis = run("ipmitool chassis status").output
    assert "System Power" in chassis
    assert "Cooling/Fan Fault    : false" in chassis
    assert run("ipmitool power status").output == "Chassis Power is on"
    assert run("ipmitool chassis power off").exit_code == 1


def test_mc_info(run: Runner) -> None:
    output = run("ipmitool mc info").output
    assert "Firmware Revision" in output
    assert "DGX-H100" in output


def test_sel_lists_gpu_faults(run: Runner, store: ClusterStore) -> None:
    assert len(run("ipmitool sel elist").output.splitlines()) == 1

    store.add_xid_error("dgx-node01", 4, 79)
    store.update_gpu("dgx-node01", 2, temperature=85)
    output = run("ipmitool sel elist").output
    assert "OEM GPU4 | XID 79 GPU has fallen off the bus" in output
    assert "Temperature GPU2 Temp | Upper Non-critical going high (85 C)" in output
    assert "Entries" in run("ipmitool sel info").output


def test_lan_print(run: Runner) -> None:
    output = run("ipmitool lan print").output
    assert "IP Address            : 10.142.0.2" in output
    assert "10.142.0.1" in output


def test_remote_bmc_by_address(run: Runner) -> None:
    assert "10.142.0.3" in run("ipmitool -I lanplus -H 10.142.0.3 -U admin -P admin lan print").output

    missing = run("ipmitool -H 10.99.0.1 sdr")
    assert missing.exit_code == 1
    assert "Unable to establish IPMI v2 / RMCP+ session to 10.99.0.1" in missing.output


def test_invalid_command_gets_a_hint(run: Runner) -> None:
    result = run("ipmitool sensr list")
    assert result.exit_code == 1
    assert "Invalid command: sensr" in result.output
    assert "Did you mean 'sensor'?" in result.output


def test_no_command(run: Runner) -> None:
    assert run("ipmitool").output.startswith("No command provided!")
