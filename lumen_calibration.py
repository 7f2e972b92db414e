# -*- coding: utf-8 -*-
"""
Lumen: Tuning the primaries of spectrally programmable light engines
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: lumen_calibration.py — Immutable calibration record and providers.

A Calibration bundles everything the correction core reads from a device
calibration:

    primary_basis   (W, P)  SPD produced by each effective primary at full on
    dark_spd        (W,)    SPD measured with all primaries off
    sampling        S = (start_nm, step_nm, count)
    gamut           primary bounds (absolute mode)

The record is validated once, at construction, and its arrays are made
read-only so that no iteration of a correction run can mutate it.

Producing calibrations (measurement, fitting, file formats) is the job of
the calibration procedure; this module only consumes the result, either as
keyword arguments or as a mapping (``Calibration.from_mapping``).
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import (
    Any, Dict, Mapping, NamedTuple, Protocol, Tuple, Union,
    runtime_checkable,
)

import numpy as np

from lumen_errors import ConfigurationError
from lumen_gamut import ABSOLUTE_GAMUT, GamutBounds

__all__ = [
    "WavelengthSampling",
    "Calibration",
    "CalibrationProvider",
    "DictCalibrationProvider",
]


# ---------------------------------------------------------------------------
# Wavelength sampling
# ---------------------------------------------------------------------------
class WavelengthSampling(NamedTuple):
    """Regular wavelength sampling ``S = (start, step, count)`` in nm."""
    start: float
    step: float
    count: int

    @classmethod
    def coerce(cls, value: Any) -> "WavelengthSampling":
        if isinstance(value, WavelengthSampling):
            return value
        try:
            start, step, count = value
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"Wavelength sampling must be (start, step, count), got {value!r}"
            ) from exc
        if float(count) != int(count) or int(count) < 1:
            raise ConfigurationError(f"Wavelength sample count must be a positive integer, got {count!r}")
        if not float(step) > 0:
            raise ConfigurationError(f"Wavelength step must be positive, got {step!r}")
        return cls(float(start), float(step), int(count))

    @property
    def wavelengths(self) -> np.ndarray:
        return self.start + self.step * np.arange(self.count, dtype=np.float64)


# ---------------------------------------------------------------------------
# Calibration record
# ---------------------------------------------------------------------------
def _frozen_array(value: Any, label: str, ndim: int) -> np.ndarray:
    arr = np.array(value, dtype=np.float64, copy=True)
    if arr.ndim != ndim:
        raise ConfigurationError(f"Calibration.{label} must be {ndim}-D, got shape {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ConfigurationError(f"Calibration.{label} contains non-finite values")
    arr = np.ascontiguousarray(arr)
    arr.flags.writeable = False
    return arr


@dataclass(slots=True, frozen=True, eq=False)
class Calibration:
    """
    Read-only device calibration consumed by the correction core.

    Attributes
    ----------
    primary_basis : np.ndarray
        (W, P) linear operator from primaries to SPD.
    dark_spd : np.ndarray
        (W,) dark/ambient SPD added to every prediction.
    sampling : WavelengthSampling
        Wavelength sampling; ``sampling.count`` must equal W.
    gamut : GamutBounds
        Bounds for absolute primaries.
    cal_id : str
        Identifier used to decide whether two objects share a calibration.
    describe : dict
        Free-form metadata (date, device, operator...).
    """
    primary_basis: np.ndarray
    dark_spd: np.ndarray
    sampling: WavelengthSampling
    gamut: GamutBounds = ABSOLUTE_GAMUT
    cal_id: str = ""
    describe: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        basis = _frozen_array(self.primary_basis, "primary_basis", 2)
        dark = _frozen_array(self.dark_spd, "dark_spd", 1)
        sampling = WavelengthSampling.coerce(self.sampling)
        gamut = GamutBounds(*self.gamut).validate()

        n_wls, n_primaries = basis.shape
        if n_primaries < 1 or n_wls < 1:
            raise ConfigurationError(f"Calibration.primary_basis is empty: {basis.shape}")
        if dark.shape[0] != n_wls:
            raise ConfigurationError(
                f"Calibration shape mismatch: primary_basis has {n_wls} wavelengths, "
                f"dark_spd has {dark.shape[0]}"
            )
        if sampling.count != n_wls:
            raise ConfigurationError(
                f"Calibration shape mismatch: sampling count {sampling.count} != "
                f"{n_wls} wavelength rows in primary_basis"
            )
        if not isinstance(self.cal_id, str):
            raise ConfigurationError(f"Calibration.cal_id must be str, got {type(self.cal_id).__name__}")

        object.__setattr__(self, "primary_basis", basis)
        object.__setattr__(self, "dark_spd", dark)
        object.__setattr__(self, "sampling", sampling)
        object.__setattr__(self, "gamut", gamut)
        object.__setattr__(self, "describe", dict(self.describe))

    # -- shape accessors ---------------------------------------------------
    @property
    def n_primaries(self) -> int:
        return self.primary_basis.shape[1]

    @property
    def n_wavelengths(self) -> int:
        return self.primary_basis.shape[0]

    @property
    def wavelengths(self) -> np.ndarray:
        return self.sampling.wavelengths

    def null_primaries(self) -> np.ndarray:
        return np.full(self.n_primaries, self.gamut.lower, dtype=np.float64)

    def full_on_primaries(self) -> np.ndarray:
        return np.full(self.n_primaries, self.gamut.upper, dtype=np.float64)

    def matches(self, other: "Calibration") -> bool:
        """True if *other* describes the same calibration (same non-empty id, or same object)."""
        if self is other:
            return True
        return bool(self.cal_id) and self.cal_id == other.cal_id

    # -- derived calibrations ----------------------------------------------
    def zero_primaries_away_from_peak(self, nm_below: float, nm_above: float) -> "Calibration":
        """
        Return a calibration whose basis is zeroed far from each primary's peak.

        Each column of ``primary_basis`` keeps only the samples within
        ``[peak - nm_below, peak + nm_above]``; everything else is treated as
        measurement noise and set to 0.
        """
        if nm_below < 0 or nm_above < 0:
            raise ConfigurationError("zero_primaries_away_from_peak: distances must be non-negative")
        wls = self.wavelengths
        basis = np.array(self.primary_basis)
        peaks = wls[np.argmax(basis, axis=0)]
        keep = (wls[:, None] >= peaks[None, :] - nm_below) & (wls[:, None] <= peaks[None, :] + nm_above)
        basis[~keep] = 0.0
        describe = dict(self.describe)
        describe["zeroed_away_from_peak"] = (float(nm_below), float(nm_above))
        return dataclasses.replace(self, primary_basis=basis, describe=describe)

    # -- mapping I/O ---------------------------------------------------------
    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Calibration":
        """
        Build a Calibration from a plain mapping.

        Two layouts are accepted:

        * flat: ``primary_basis``, ``dark_spd``, ``S`` (or ``sampling``) and
          optionally ``gamut``, ``cal_id``, ``describe``;
        * nested, as stored by the calibration procedure:
          ``{"computed": {"pr650M": ..., "pr650MeanDark": ...},
          "describe": {"S": ..., "calID": ..., ...}}``.

        Unknown top-level keys are rejected.
        """
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"Calibration mapping expected, got {type(data).__name__}")

        if "computed" in data:
            unknown = set(data) - {"computed", "describe"}
            if unknown:
                raise ConfigurationError(f"Unknown calibration keys: {sorted(unknown)}")
            computed = data["computed"]
            describe = dict(data.get("describe", {}))
            missing = [k for k in ("pr650M", "pr650MeanDark") if k not in computed]
            if missing or "S" not in describe:
                raise ConfigurationError(
                    f"Calibration mapping missing fields: {missing + ([] if 'S' in describe else ['describe.S'])}"
                )
            sampling = describe.pop("S")
            cal_id = str(describe.pop("calID", ""))
            return cls(
                primary_basis=computed["pr650M"],
                dark_spd=np.ravel(computed["pr650MeanDark"]),
                sampling=sampling,
                cal_id=cal_id,
                describe=describe,
            )

        allowed = {"primary_basis", "dark_spd", "S", "sampling", "gamut", "cal_id", "describe"}
        unknown = set(data) - allowed
        if unknown:
            raise ConfigurationError(f"Unknown calibration keys: {sorted(unknown)}")
        missing = [k for k in ("primary_basis", "dark_spd") if k not in data]
        if "S" not in data and "sampling" not in data:
            missing.append("S")
        if missing:
            raise ConfigurationError(f"Calibration mapping missing fields: {missing}")
        return cls(
            primary_basis=data["primary_basis"],
            dark_spd=data["dark_spd"],
            sampling=data.get("S", data.get("sampling")),
            gamut=GamutBounds(*data.get("gamut", ABSOLUTE_GAMUT)),
            cal_id=str(data.get("cal_id", "")),
            describe=dict(data.get("describe", {})),
        )

    def __repr__(self) -> str:
        return (
            f"Calibration(cal_id={self.cal_id!r}, primaries={self.n_primaries}, "
            f"wavelengths={self.n_wavelengths}, S={tuple(self.sampling)}, "
            f"gamut=[{self.gamut.lower}, {self.gamut.upper}])"
        )


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------
@runtime_checkable
class CalibrationProvider(Protocol):
    """
    Anything that can hand out calibrations by identifier.

    load_calibration(identifier) → Calibration
    """
    def load_calibration(self, identifier: str) -> Calibration: ...


class DictCalibrationProvider:
    """
    In-memory provider over ``{identifier: Calibration | mapping}``.

    Mappings are converted on first access and cached, so repeated loads of
    the same identifier return the same (immutable) object.
    """
    __slots__ = ("_sources", "_cache")

    def __init__(self, sources: Dict[str, Union[Calibration, Mapping[str, Any]]]) -> None:
        self._sources = dict(sources)
        self._cache: Dict[str, Calibration] = {}

    def load_calibration(self, identifier: str) -> Calibration:
        cached = self._cache.get(identifier)
        if cached is not None:
            return cached
        if identifier not in self._sources:
            raise KeyError(
                f"DictCalibrationProvider: no calibration '{identifier}'. "
                f"Available: {sorted(self._sources)}"
            )
        source = self._sources[identifier]
        cal = source if isinstance(source, Calibration) else Calibration.from_mapping(source)
        if not cal.cal_id:
            cal = dataclasses.replace(cal, cal_id=identifier)
        self._cache[identifier] = cal
        return cal

    def identifiers(self) -> Tuple[str, ...]:
        return tuple(sorted(self._sources))

    def contains(self, identifier: str) -> bool:
        return identifier in self._sources

