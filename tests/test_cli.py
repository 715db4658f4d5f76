import argparse

import pytest

from scripts.sync_permissions import build_parser, parse_preset


def test_parse_preset() -> None:
    assert parse_preset("app:12") == ("app", 12)
    assert parse_preset("org:team:3") == ("org:team", 3)


@pytest.mark.parametrize("value", ["app", ":3", "app:x"])
def test_parse_preset_rejects_malformed_values(value: str) -> None:
    with pytest.raises(argparse.ArgumentTypeError):
        parse_preset(value)


def test_parser_collects_presets() -> None:
    args = build_parser().parse_args(["meta.yaml", "--preset", "app:1", "--preset", "team:2"])

    assert args.path == "meta.yaml"
    assert args.preset == [("app", 1), ("team", 2)]
