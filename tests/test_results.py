import dataclasses

import pytest

from minifypix.errors import CompressionError, NotFoundError, OptimizeError
from minifypix.results import OptimizationResult, format_percent


@pytest.mark.parametrize(
    "original, optimized, percent",
    [
        (1000, 800, "20.00%"),
        (1000, 1000, "0.00%"),
        (3, 2, "33.33%"),
        (7, 1, "85.71%"),
        (0, 0, "0.00%"),
    ],
)
def test_build(original, optimized, percent):
    result = OptimizationResult.build("x.png", original, optimized)

    assert result.saving == original - optimized
    assert result.saving_percent == percent


def test_result_is_frozen():
    result = OptimizationResult.build("x.png", 10, 5)

    with pytest.raises(dataclasses.FrozenInstanceError):
        result.saving = 0


def test_format_percent_zero_whole():
    assert format_percent(5, 0) == "0.00%"


def test_optimize_error_formats_once():
    cause = CompressionError("a.png", message="tool crashed")
    err = OptimizeError("a.png", cause.stage, cause)

    assert str(err) == "Failed to optimize a.png: tool crashed"
    assert err.stage == "compress"
    assert err.cause is cause


def test_not_found_names_path():
    assert str(NotFoundError("img/a.png")) == "file not found: img/a.png"


def test_stage_error_falls_back_to_class_name():
    assert str(CompressionError("a.png", KeyError())) == "KeyError"
