from superpod_sim.core.parser import is_flag, parse, split_words


def test_flags_with_values_and_booleans() -> None:
    cmd = parse("nvidia-smi -q -d TEMPERATURE -i 0")
    assert cmd.base_command == "nvidia-smi"
    assert cmd.subcommand is None
    assert cmd.flags == {"q": True, "d": "TEMPERATURE", "i": "0"}
    assert cmd.positional_args == ()


def test_quoted_flag_value_keeps_its_space() -> None:
    cmd = parse('sinfo -o "%n %G"')
    assert cmd.flags == {"o": "%n %G"}


def test_long_flags_with_equals() -> None:
    cmd = parse("nvidia-smi --query-gpu=index,name --format=csv,noheader")
    assert cmd.flags == {"query-gpu": "index,name", "format": "csv,noheader"}


def test_known_subcommands_gate_the_second_word() -> None:
    known = {"scontrol": ("show", "update"), "sbatch": ()}

    show = parse("scontrol show node dgx-node01", known)
    assert show.subcommand == "show"
    assert show.positional_args == ("node", "dgx-node01")
    assert show.words == ["show", "node", "dgx-node01"]

    batch = parse("sbatch train.sh", known)
    assert batch.subcommand is None
    assert batch.positional_args == ("train.sh",)


def test_without_known_subcommands_first_word_is_subcommand() -> None:
    cmd = parse("dcgmi health -g 0 -c")
    assert cmd.subcommand == "health"
    assert cmd.flags == {"g": "0", "c": True}


def test_negative_number_is_a_value_not_a_flag() -> None:
    assert not is_flag("-1")
    cmd = parse("nvidia-smi -i -1")
    assert cmd.flags == {"i": "-1"}


def test_double_dash_ends_options() -> None:
    cmd = parse("srun -N 1 -- hostname -s")
    assert cmd.flags == {"N": "1"}
    assert cmd.positional_args == ("hostname", "-s")


def test_empty_line_parses_to_empty_command() -> None:
    cmd = parse("   ")
    assert cmd.base_command == ""
    assert cmd.words == []


def test_unbalanced_quotes_fall_back_to_whitespace_split() -> None:
    assert split_words('echo "hello world') == ["echo", '"hello', "world"]


def test_tokens_rejoin_to_the_same_line() -> None:
    line = "ipmitool -I lanplus -H 10.142.0.2 sdr list"
    cmd = parse(line)
    tokens = [cmd.base_command]
    for name, value in cmd.flags.items():
        tokens.append(f"-{name}")
        if value is not True:
            tokens.append(str(value))
    tokens.extend(cmd.words)
    assert tokens == split_words(line)
    again = parse(" ".join(tokens))
    assert (again.flags, again.positional_args) == (cmd.flags, cmd.positional_args)
