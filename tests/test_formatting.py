import json
import re

from superpod_sim.core.formatting import (
    GREEN,
    aligned_columns,
    color_status,
    colorize,
    display_key,
    dot_leader,
    json_records,
    key_value_block,
    pipe_table,
    strip_ansi,
    visible_len,
)


def test_strip_ansi_and_visible_len() -> None:
    text = colorize("Healthy", GREEN)
    assert text != "Healthy"
    assert strip_ansi(text) == "Healthy"
    assert visible_len(text) == 7


def test_dot_leader_is_seventy_visible_columns() -> None:
    line = dot_leader("GPU temperature [GPU0]", color_status("Healthy"))
    assert visible_len(line) == 70
    assert "..." in line
    assert strip_ansi(line).endswith(" Healthy")


def test_dot_leader_keeps_one_dot_for_long_descriptions() -> None:
    line = dot_leader("x" * 80, "OK")
    assert " . OK" in line


def test_pipe_table_uses_pipes_without_ascii_borders() -> None:
    table = pipe_table(["Name (key)", "Nodes"], [["dgx-h100", "8"], ["headnode", "1"]])
    assert table.splitlines()[0] == "Name (key) | Nodes"
    assert "+--" not in table
    assert not re.search(r"\| -+\|", table)


def test_pipe_table_pinned_widths() -> None:
    table = pipe_table(["A", "B", "C"], [["x", "y", "z"]], widths=(4, 3))
    assert table.splitlines()[1] == "x    | y   | z"


def test_aligned_columns() -> None:
    out = aligned_columns([["PARTITION", "NODES"], ["gpu*", "8"]])
    assert out.splitlines() == ["PARTITION  NODES", "gpu*       8"]


def test_key_value_block_aligns_separators() -> None:
    out = key_value_block([("IP", "10.0.0.1"), ("Subnet Mask", "255.255.0.0")])
    assert out.splitlines() == ["IP          : 10.0.0.1", "Subnet Mask : 255.255.0.0"]


def test_display_key_capitalizes_acronyms() -> None:
    assert display_key("ip_address") == "IPAddress"
    assert display_key("ipAddress") == "IPAddress"
    assert display_key("hostname") == "Hostname"
    assert display_key("category") == "Category"


def test_json_records_have_no_lowercase_keys() -> None:
    payload = json.loads(
        json_records([{"hostname": "dgx-node01", "ip_address": "10.141.0.2"}], {"hostname": "Hostname (key)"})
    )
    assert payload == [{"Hostname (key)": "dgx-node01", "IPAddress": "10.141.0.2"}]
