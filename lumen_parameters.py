# -*- coding: utf-8 -*-
"""
Lumen: Tuning the primaries of spectrally programmable light engines
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: lumen_parameters.py — Direction and modulation parameter sets.

Parameter sets are a closed tagged union:

    DirectionParams = UnipolarDirectionParams
                    | BipolarDirectionParams
                    | LightFluxDirectionParams
                    | BasicModulationParams

Each variant is a frozen dataclass with a literal ``type`` tag.  Field types
and ranges are checked once, in ``__post_init__``; mappings (dictionaries of
named parameter sets, JSON files...) go through ``params_from_mapping`` which
dispatches on the tag and rejects keys the variant does not know.
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass
from typing import Any, Dict, Literal, Mapping, Tuple, Union

import numpy as np

from lumen_errors import ConfigurationError

__all__ = [
    "UnipolarDirectionParams",
    "BipolarDirectionParams",
    "LightFluxDirectionParams",
    "BasicModulationParams",
    "DirectionParams",
    "params_from_mapping",
    "direction_name_from_params",
]

DEFAULT_PHOTORECEPTOR_CLASSES: Tuple[str, ...] = (
    "LConeTabulatedAbsorbance",
    "MConeTabulatedAbsorbance",
    "SConeTabulatedAbsorbance",
    "Melanopsin",
)

WAVEFORM_TYPES = ("pulse", "sinusoid", "squarewave")
RECEPTOR_ISOLATE_MODES = ("Standard",)

# Field kinds shared by all variants
_KINDS: Dict[str, str] = {
    "type": "str",
    "name": "str",
    "base_name": "str",
    "receptor_isolate_mode": "str",
    "waveform": "str",
    "photoreceptor_classes": "str_tuple",
    "field_size_degrees": "float",
    "pupil_diameter_mm": "float",
    "primary_headroom": "float",
    "max_power_diff": "float",
    "base_modulation_contrast": "float",
    "light_flux_down_factor": "float",
    "time_step": "float",
    "stimulus_duration": "float",
    "frequency": "float",
    "phase_degrees": "float",
    "contrast": "float",
    "cosine_window_duration_secs": "float",
    "modulation_contrast": "float_tuple",
    "desired_chromaticity": "float_tuple",
    "which_receptors_to_isolate": "index_tuple",
    "which_receptors_to_ignore": "index_tuple",
    "which_receptors_to_minimize": "index_tuple",
    "which_primaries_to_pin": "index_tuple",
    "use_ambient": "bool",
    "cosine_window_in": "bool",
    "cosine_window_out": "bool",
}


def _coerce(owner: str, name: str, kind: str, value: Any) -> Any:
    where = f"{owner}.{name}"
    if kind == "str":
        if not isinstance(value, str):
            raise ConfigurationError(f"{where} must be str, got {type(value).__name__}")
        return value
    if kind == "bool":
        if not isinstance(value, (bool, np.bool_)):
            raise ConfigurationError(f"{where} must be bool, got {type(value).__name__}")
        return bool(value)
    if kind == "float":
        if isinstance(value, (bool, np.bool_)) or not isinstance(value, (int, float, np.integer, np.floating)):
            raise ConfigurationError(f"{where} must be a number, got {type(value).__name__}")
        if not math.isfinite(value):
            raise ConfigurationError(f"{where} must be finite, got {value}")
        return float(value)

    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple, np.ndarray)):
        raise ConfigurationError(f"{where} must be a sequence, got {type(value).__name__}")
    items = list(np.ravel(value)) if isinstance(value, np.ndarray) else list(value)
    if kind == "str_tuple":
        if not all(isinstance(v, str) for v in items):
            raise ConfigurationError(f"{where} must contain only str")
        return tuple(items)
    if kind == "index_tuple":
        if not all(isinstance(v, (int, np.integer)) and not isinstance(v, bool) and v >= 0 for v in items):
            raise ConfigurationError(f"{where} must contain non-negative integer indices, got {items}")
        return tuple(int(v) for v in items)
    # float_tuple
    return tuple(_coerce(owner, f"{name}[{i}]", "float", v) for i, v in enumerate(items))


def _check_fields(obj: Any) -> None:
    owner = type(obj).__name__
    for f in dataclasses.fields(obj):
        value = _coerce(owner, f.name, _KINDS[f.name], getattr(obj, f.name))
        object.__setattr__(obj, f.name, value)


def _check_range(owner: str, name: str, value: float, lo: float, hi: float, *, closed_hi: bool = True) -> None:
    ok = lo <= value <= hi if closed_hi else lo <= value < hi
    if not ok:
        bracket = "]" if closed_hi else ")"
        raise ConfigurationError(f"{owner}.{name} must be in [{lo}, {hi}{bracket}, got {value}")


def _check_tag(obj: Any, expected: str) -> None:
    if obj.type != expected:
        raise ConfigurationError(f"{type(obj).__name__}.type must be {expected!r}, got {obj.type!r}")


def _check_receptor_params(obj: Any) -> None:
    owner = type(obj).__name__
    if obj.field_size_degrees <= 0:
        raise ConfigurationError(f"{owner}.field_size_degrees must be > 0, got {obj.field_size_degrees}")
    if obj.pupil_diameter_mm <= 0:
        raise ConfigurationError(f"{owner}.pupil_diameter_mm must be > 0, got {obj.pupil_diameter_mm}")
    _check_range(owner, "primary_headroom", obj.primary_headroom, 0.0, 0.5, closed_hi=False)
    if not obj.photoreceptor_classes:
        raise ConfigurationError(f"{owner}.photoreceptor_classes must not be empty")
    n_receptors = len(obj.photoreceptor_classes)
    for name in ("which_receptors_to_isolate", "which_receptors_to_ignore", "which_receptors_to_minimize"):
        indices = getattr(obj, name)
        if any(i >= n_receptors for i in indices):
            raise ConfigurationError(
                f"{owner}.{name} {indices} out of range for {n_receptors} photoreceptor classes"
            )
    roles = obj.which_receptors_to_isolate + obj.which_receptors_to_ignore + obj.which_receptors_to_minimize
    if len(set(roles)) != len(roles):
        raise ConfigurationError(
            f"{owner}: a receptor can only be isolated, ignored or minimized once, got {roles}"
        )
    if obj.receptor_isolate_mode not in RECEPTOR_ISOLATE_MODES:
        raise ConfigurationError(
            f"{owner}.receptor_isolate_mode must be one of {RECEPTOR_ISOLATE_MODES}, "
            f"got {obj.receptor_isolate_mode!r}"
        )
    if not obj.max_power_diff > 0:
        raise ConfigurationError(f"{owner}.max_power_diff must be > 0, got {obj.max_power_diff}")
    if obj.modulation_contrast and len(obj.modulation_contrast) != len(obj.which_receptors_to_isolate):
        raise ConfigurationError(
            f"{owner}: {len(obj.modulation_contrast)} modulation contrasts for "
            f"{len(obj.which_receptors_to_isolate)} isolated receptors"
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Variants
# ═══════════════════════════════════════════════════════════════════════════════
@dataclass(slots=True, frozen=True)
class UnipolarDirectionParams:
    """Receptor-isolating direction that only increases from the background."""
    type: Literal["unipolar"] = "unipolar"
    base_name: str = ""
    photoreceptor_classes: Tuple[str, ...] = DEFAULT_PHOTORECEPTOR_CLASSES
    field_size_degrees: float = 27.5
    pupil_diameter_mm: float = 8.0
    primary_headroom: float = 0.005
    max_power_diff: float = 0.1
    base_modulation_contrast: float = 4 / 6
    modulation_contrast: Tuple[float, ...] = ()
    which_receptors_to_isolate: Tuple[int, ...] = ()
    which_receptors_to_ignore: Tuple[int, ...] = ()
    which_receptors_to_minimize: Tuple[int, ...] = ()
    which_primaries_to_pin: Tuple[int, ...] = ()
    receptor_isolate_mode: str = "Standard"
    use_ambient: bool = True

    def __post_init__(self) -> None:
        _check_fields(self)
        _check_tag(self, "unipolar")
        _check_receptor_params(self)


@dataclass(slots=True, frozen=True)
class BipolarDirectionParams:
    """Receptor-isolating direction with positive and negative arms."""
    type: Literal["bipolar"] = "bipolar"
    base_name: str = ""
    photoreceptor_classes: Tuple[str, ...] = DEFAULT_PHOTORECEPTOR_CLASSES
    field_size_degrees: float = 27.5
    pupil_diameter_mm: float = 8.0
    primary_headroom: float = 0.005
    max_power_diff: float = 0.1
    base_modulation_contrast: float = 4 / 6
    modulation_contrast: Tuple[float, ...] = ()
    which_receptors_to_isolate: Tuple[int, ...] = ()
    which_receptors_to_ignore: Tuple[int, ...] = ()
    which_receptors_to_minimize: Tuple[int, ...] = ()
    which_primaries_to_pin: Tuple[int, ...] = ()
    receptor_isolate_mode: str = "Standard"
    use_ambient: bool = True

    def __post_init__(self) -> None:
        _check_fields(self)
        _check_tag(self, "bipolar")
        _check_receptor_params(self)


@dataclass(slots=True, frozen=True)
class LightFluxDirectionParams:
    """Luminance step toward a chromaticity, scaled down by ``light_flux_down_factor``."""
    type: Literal["lightflux"] = "lightflux"
    base_name: str = "LightFlux"
    desired_chromaticity: Tuple[float, ...] = (0.54, 0.38)
    light_flux_down_factor: float = 5.0

    def __post_init__(self) -> None:
        _check_fields(self)
        _check_tag(self, "lightflux")
        owner = type(self).__name__
        if len(self.desired_chromaticity) != 2:
            raise ConfigurationError(
                f"{owner}.desired_chromaticity must be (x, y), got {self.desired_chromaticity}"
            )
        x, y = self.desired_chromaticity
        if not (0 < x < 1 and 0 < y < 1 and x + y <= 1):
            raise ConfigurationError(f"{owner}.desired_chromaticity {self.desired_chromaticity} is not a valid xy")
        if self.light_flux_down_factor < 1:
            raise ConfigurationError(
                f"{owner}.light_flux_down_factor must be >= 1, got {self.light_flux_down_factor}"
            )


@dataclass(slots=True, frozen=True)
class BasicModulationParams:
    """Temporal waveform for a direction (see ``lumen_waveforms``)."""
    type: Literal["basic"] = "basic"
    name: str = ""
    waveform: str = "pulse"
    time_step: float = 1 / 64
    stimulus_duration: float = 3.0
    frequency: float = 0.0
    phase_degrees: float = 0.0
    contrast: float = 1.0
    cosine_window_in: bool = True
    cosine_window_out: bool = True
    cosine_window_duration_secs: float = 0.5

    def __post_init__(self) -> None:
        _check_fields(self)
        _check_tag(self, "basic")
        owner = type(self).__name__
        if self.waveform not in WAVEFORM_TYPES:
            raise ConfigurationError(f"{owner}.waveform must be one of {WAVEFORM_TYPES}, got {self.waveform!r}")
        if self.time_step <= 0:
            raise ConfigurationError(f"{owner}.time_step must be > 0, got {self.time_step}")
        if self.stimulus_duration < self.time_step:
            raise ConfigurationError(
                f"{owner}.stimulus_duration ({self.stimulus_duration}) shorter than one time step"
            )
        if self.frequency < 0:
            raise ConfigurationError(f"{owner}.frequency must be >= 0, got {self.frequency}")
        if self.waveform != "pulse" and self.frequency == 0:
            raise ConfigurationError(f"{owner}: a {self.waveform} needs frequency > 0")
        _check_range(owner, "contrast", self.contrast, -1.0, 1.0)
        if self.cosine_window_in or self.cosine_window_out:
            if self.cosine_window_duration_secs < 0:
                raise ConfigurationError(f"{owner}.cosine_window_duration_secs must be >= 0")
            ramps = int(self.cosine_window_in) + int(self.cosine_window_out)
            if ramps * self.cosine_window_duration_secs > self.stimulus_duration + 1e-12:
                raise ConfigurationError(
                    f"{owner}: cosine windows ({ramps} x {self.cosine_window_duration_secs} s) "
                    f"exceed the stimulus duration ({self.stimulus_duration} s)"
                )

    @property
    def n_samples(self) -> int:
        return int(round(self.stimulus_duration / self.time_step))

    @property
    def n_window_samples(self) -> int:
        return int(round(self.cosine_window_duration_secs / self.time_step))


DirectionParams = Union[
    UnipolarDirectionParams,
    BipolarDirectionParams,
    LightFluxDirectionParams,
    BasicModulationParams,
]


# ---------------------------------------------------------------------------
# Mapping I/O and naming
# ---------------------------------------------------------------------------
def params_from_mapping(mapping: Mapping[str, Any]) -> DirectionParams:
    """
    Build the parameter variant named by ``mapping["type"]``.

    Raises:
        ConfigurationError: Missing or unknown ``type``, keys the variant does
            not define, or values of the wrong type.
    """
    if not isinstance(mapping, Mapping):
        raise ConfigurationError(f"parameter mapping expected, got {type(mapping).__name__}")
    match mapping.get("type"):
        case "unipolar":
            cls = UnipolarDirectionParams
        case "bipolar":
            cls = BipolarDirectionParams
        case "lightflux":
            cls = LightFluxDirectionParams
        case "basic":
            cls = BasicModulationParams
        case None:
            raise ConfigurationError("parameter mapping has no 'type' tag")
        case other:
            raise ConfigurationError(f"Unknown parameter type: {other!r}")

    known = {f.name for f in dataclasses.fields(cls)}
    unknown = set(mapping) - known
    if unknown:
        raise ConfigurationError(f"{cls.__name__}: unknown parameters {sorted(unknown)}")
    return cls(**dict(mapping))


def direction_name_from_params(params: DirectionParams) -> str:
    """
    Canonical name of a parameter set, e.g. ``MaxMel_bipolar_275_80_667``
    (base name, field size ×10, pupil diameter ×10, contrast ×1000).
    """
    match params:
        case UnipolarDirectionParams() | BipolarDirectionParams():
            if not params.base_name:
                raise ConfigurationError(f"{type(params).__name__} needs a base_name to be named")
            return (
                f"{params.base_name}_{params.type}_{round(10 * params.field_size_degrees)}_"
                f"{round(10 * params.pupil_diameter_mm)}_{round(1000 * params.base_modulation_contrast)}"
            )
        case LightFluxDirectionParams():
            x, y = params.desired_chromaticity
            return (
                f"{params.base_name}_{round(1000 * x)}_{round(1000 * y)}_"
                f"{round(10 * params.light_flux_down_factor)}"
            )
        case BasicModulationParams():
            if params.name:
                return params.name
            return f"{params.waveform}_{round(1000 * params.stimulus_duration)}ms_{round(100 * params.contrast)}"
        case _:
            raise ConfigurationError(f"Unsupported parameter set: {type(params).__name__}")
