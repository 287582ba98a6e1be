"""Spectral audio analysis for cries, screams, barks, falls and breaking glass.

The analyzer works on a single sample window. It computes a magnitude
spectrum, extracts the strongest local peaks inside each event's frequency
band and scores them against static reference signatures. Some events need a
secondary discriminator on top of peak overlap (harmonics for cries, spread
for barks, band energy ratios for screams and glass, low-frequency dominance
plus loudness for falls).
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Sequence

import numpy as np
from loguru import logger

from libs.core.domain.entities import AudioFinding, ConcernLevel, Scenario

FFT_SIZE = 2048
MAX_PEAKS = 10
MATCH_TOLERANCE_HZ = 50.0
HARMONIC_RATIO = 0.2
HARMONIC_SEARCH_BINS = 1
MIN_FUNDAMENTAL_MAGNITUDE = 0.01


@dataclass(frozen=True)
class AudioSignature:
    """Reference frequency band and expected peaks for one acoustic event."""

    low_hz: float
    high_hz: float
    peaks_hz: tuple[float, ...]


SIGNATURES: Mapping[str, AudioSignature] = MappingProxyType(
    {
        "cry": AudioSignature(300, 600, (350, 450, 530)),
        "scream": AudioSignature(1000, 4000, (1500, 2500, 3500)),
        "barking": AudioSignature(100, 2000, (200, 400, 800, 1200)),
        "whining": AudioSignature(300, 1500, (400, 600, 900)),
        "meowing": AudioSignature(200, 2000, (300, 500, 1000, 1500)),
        "glass_break": AudioSignature(2000, 8000, (3000, 5000, 7000)),
        "fall_impact": AudioSignature(20, 200, (50, 100, 150)),
    }
)


@dataclass(frozen=True)
class AudioAnalyzerConfig:
    silence_threshold_db: float = -50.0
    loud_threshold_db: float = -10.0
    fall_detection_enabled: bool = True


class AudioAnalyzer:
    """Stateless apart from read-only signatures and usage counters."""

    def __init__(self, config: AudioAnalyzerConfig | None = None) -> None:
        self._config = config or AudioAnalyzerConfig()
        self._analysis_count = 0
        self._detection_count = 0

    @property
    def config(self) -> AudioAnalyzerConfig:
        return self._config

    def analyze(
        self,
        samples: Sequence[float] | np.ndarray,
        sample_rate: int,
        rms_level: float,
        scenario: Scenario,
    ) -> list[AudioFinding]:
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")

        self._analysis_count += 1
        findings: list[AudioFinding] = []

        if rms_level < db_to_linear(self._config.silence_threshold_db):
            findings.append(
                AudioFinding(
                    detected=True,
                    event_type="silence",
                    confidence=0.7,
                    concern_level=ConcernLevel.LOW,
                    details="Extended silence detected",
                )
            )

        spectrum = compute_spectrum(samples)
        candidates: list[AudioFinding] = []

        if scenario == Scenario.BABY:
            candidates.append(self._detect_crying(spectrum, sample_rate))
        if scenario == Scenario.PET:
            candidates.append(self._detect_barking(spectrum, sample_rate))
            candidates.append(self._detect_whining(spectrum, sample_rate))
            candidates.append(self._detect_meowing(spectrum, sample_rate))
        if scenario == Scenario.ELDERLY and self._config.fall_detection_enabled:
            candidates.append(
                self._detect_fall_impact(spectrum, sample_rate, rms_level)
            )
        candidates.append(self._detect_scream(spectrum, sample_rate))
        candidates.append(self._detect_glass_break(spectrum, sample_rate))

        for candidate in candidates:
            if candidate.detected:
                self._detection_count += 1
                findings.append(candidate)
                logger.debug(
                    f"[AUDIO] {candidate.event_type} detected "
                    f"confidence={candidate.confidence:.2f}"
                )

        if not findings:
            findings.append(
                AudioFinding(
                    detected=False,
                    event_type="normal",
                    confidence=0.8,
                    concern_level=ConcernLevel.NONE,
                    details="Normal audio levels",
                )
            )
        return findings

    def get_stats(self) -> dict[str, float]:
        return {
            "analysis_count": self._analysis_count,
            "detection_count": self._detection_count,
            "detection_rate": (
                self._detection_count / self._analysis_count
                if self._analysis_count
                else 0.0
            ),
        }

    def _detect_crying(self, spectrum: np.ndarray, sample_rate: int) -> AudioFinding:
        sig = SIGNATURES["cry"]
        peaks = find_peaks_in_range(spectrum, sample_rate, sig.low_hz, sig.high_hz)
        match_score = match_frequency_pattern(peaks, sig.peaks_hz)
        fundamental = peaks[0] if peaks else 400.0
        has_harmonics = detect_harmonics(spectrum, fundamental, sample_rate)

        confidence = min(1.0, match_score * (1.3 if has_harmonics else 0.8))
        detected = confidence > 0.6
        concern = ConcernLevel.NONE
        if detected:
            concern = ConcernLevel.HIGH if confidence > 0.85 else ConcernLevel.MEDIUM
        return _finding("cry", "Crying", detected, confidence, concern, peaks)

    def _detect_barking(self, spectrum: np.ndarray, sample_rate: int) -> AudioFinding:
        sig = SIGNATURES["barking"]
        peaks = find_peaks_in_range(spectrum, sample_rate, sig.low_hz, sig.high_hz)
        match_score = match_frequency_pattern(peaks, sig.peaks_hz)
        # barks are impulsive with a wide spread between matched peaks
        impulsive = len(peaks) >= 3 and max(peaks) > min(peaks) * 4

        confidence = min(1.0, match_score * (1.2 if impulsive else 0.9))
        detected = confidence > 0.55
        concern = ConcernLevel.LOW if detected else ConcernLevel.NONE
        return _finding("barking", "Barking", detected, confidence, concern, peaks)

    def _detect_whining(self, spectrum: np.ndarray, sample_rate: int) -> AudioFinding:
        sig = SIGNATURES["whining"]
        peaks = find_peaks_in_range(spectrum, sample_rate, sig.low_hz, sig.high_hz)
        match_score = match_frequency_pattern(peaks, sig.peaks_hz)
        narrow_band = len(peaks) <= 3

        confidence = min(1.0, match_score * (1.2 if narrow_band else 0.8))
        detected = confidence > 0.5
        concern = ConcernLevel.NONE
        if detected:
            concern = ConcernLevel.MEDIUM if confidence > 0.75 else ConcernLevel.LOW
        return _finding(
            "whining", "Whining/distress sound", detected, confidence, concern, peaks
        )

    def _detect_meowing(self, spectrum: np.ndarray, sample_rate: int) -> AudioFinding:
        sig = SIGNATURES["meowing"]
        peaks = find_peaks_in_range(spectrum, sample_rate, sig.low_hz, sig.high_hz)
        match_score = match_frequency_pattern(peaks, sig.peaks_hz)
        fundamental = peaks[0] if peaks else 500.0
        has_harmonics = detect_harmonics(spectrum, fundamental, sample_rate)

        confidence = min(1.0, match_score * (1.2 if has_harmonics else 0.8))
        detected = confidence > 0.6
        concern = ConcernLevel.LOW if detected else ConcernLevel.NONE
        return _finding("meowing", "Meowing", detected, confidence, concern, peaks)

    def _detect_scream(self, spectrum: np.ndarray, sample_rate: int) -> AudioFinding:
        sig = SIGNATURES["scream"]
        peaks = find_peaks_in_range(spectrum, sample_rate, sig.low_hz, sig.high_hz)
        high_ratio = _energy_ratio(spectrum, sample_rate, 1000, 4000)
        match_score = match_frequency_pattern(peaks, sig.peaks_hz)

        confidence = min(1.0, (match_score + high_ratio) / 2 * 1.5)
        detected = confidence > 0.6 and high_ratio > 0.3
        concern = ConcernLevel.HIGH if detected else ConcernLevel.NONE
        return _finding(
            "scream", "Scream/yelling", detected, confidence, concern, peaks
        )

    def _detect_glass_break(
        self, spectrum: np.ndarray, sample_rate: int
    ) -> AudioFinding:
        sig = SIGNATURES["glass_break"]
        peaks = find_peaks_in_range(spectrum, sample_rate, sig.low_hz, sig.high_hz)
        high_ratio = _energy_ratio(spectrum, sample_rate, 3000, 8000)
        match_score = match_frequency_pattern(peaks, sig.peaks_hz)

        confidence = min(1.0, (match_score + high_ratio) / 2 * 1.4)
        detected = confidence > 0.6 and high_ratio > 0.4
        concern = ConcernLevel.HIGH if detected else ConcernLevel.NONE
        return _finding(
            "glass_break", "Glass breaking", detected, confidence, concern, peaks
        )

    def _detect_fall_impact(
        self,
        spectrum: np.ndarray,
        sample_rate: int,
        rms_level: float,
    ) -> AudioFinding:
        sig = SIGNATURES["fall_impact"]
        peaks = find_peaks_in_range(spectrum, sample_rate, sig.low_hz, sig.high_hz)
        low_energy = energy_in_range(spectrum, sample_rate, 20, 200)
        mid_energy = energy_in_range(spectrum, sample_rate, 200, 2000)
        dominance = low_energy / mid_energy if mid_energy > 0 else 0.0
        if mid_energy == 0 and low_energy > 0:
            dominance = float("inf")
        is_loud = rms_level > db_to_linear(self._config.loud_threshold_db)

        match_score = match_frequency_pattern(peaks, sig.peaks_hz)
        confidence = min(
            1.0, (match_score + min(dominance, 1.0)) / 2 * (1.5 if is_loud else 0.7)
        )
        detected = confidence > 0.55 and dominance > 2 and is_loud
        concern = ConcernLevel.CRITICAL if detected else ConcernLevel.NONE
        return _finding(
            "fall_impact", "Possible fall impact", detected, confidence, concern, peaks
        )


def summarize_findings(findings: Sequence[AudioFinding]) -> tuple[ConcernLevel, str]:
    """Reduce concurrent findings to the strongest concern and a description."""
    if not findings:
        return ConcernLevel.NONE, "Normal audio levels"
    strongest = max(finding.concern_level for finding in findings)
    details = [
        finding.details for finding in findings if finding.concern_level == strongest
    ]
    return strongest, "; ".join(details)


def compute_spectrum(samples: Sequence[float] | np.ndarray) -> np.ndarray:
    """Magnitude spectrum of the first FFT_SIZE samples, one bin per n/2."""
    window = np.asarray(samples, dtype=np.float64)[:FFT_SIZE]
    n = window.size
    if n < 2:
        return np.zeros(0, dtype=np.float64)
    return np.abs(np.fft.rfft(window))[: n // 2] / n


def bin_width(spectrum: np.ndarray, sample_rate: int) -> float:
    return sample_rate / (2 * spectrum.size)


def find_peaks_in_range(
    spectrum: np.ndarray,
    sample_rate: int,
    low_hz: float,
    high_hz: float,
    limit: int = MAX_PEAKS,
) -> list[float]:
    """Local maxima inside [low_hz, high_hz], strongest first, in Hz."""
    if spectrum.size < 3:
        return []
    width = bin_width(spectrum, sample_rate)
    low_bin = max(1, int(np.floor(low_hz / width)))
    high_bin = min(spectrum.size - 2, int(np.ceil(high_hz / width)))

    peaks: list[tuple[float, float]] = []
    for i in range(low_bin, high_bin + 1):
        if spectrum[i] > spectrum[i - 1] and spectrum[i] > spectrum[i + 1]:
            peaks.append((i * width, float(spectrum[i])))

    peaks.sort(key=lambda item: item[1], reverse=True)
    return [freq for freq, _ in peaks[:limit]]


def match_frequency_pattern(
    detected: Sequence[float],
    expected: Sequence[float],
    tolerance: float = MATCH_TOLERANCE_HZ,
) -> float:
    """Fraction of expected peaks that have a detected peak within tolerance."""
    if not detected or not expected:
        return 0.0
    matches = sum(
        1 for exp in expected if any(abs(det - exp) <= tolerance for det in detected)
    )
    return matches / len(expected)


def detect_harmonics(
    spectrum: np.ndarray,
    fundamental_hz: float,
    sample_rate: int,
) -> bool:
    if spectrum.size == 0:
        return False
    width = bin_width(spectrum, sample_rate)
    fundamental_bin = int(round(fundamental_hz / width))
    if fundamental_bin <= 0 or fundamental_bin >= spectrum.size:
        return False

    fundamental_mag = spectrum[fundamental_bin]
    if fundamental_mag < MIN_FUNDAMENTAL_MAGNITUDE:
        return False

    for multiple in (2, 3):
        harmonic_bin = int(round(multiple * fundamental_hz / width))
        if harmonic_bin >= spectrum.size:
            continue
        # overtones rarely land on the exact bin, take the strongest neighbour
        low = max(1, harmonic_bin - HARMONIC_SEARCH_BINS)
        high = min(spectrum.size, harmonic_bin + HARMONIC_SEARCH_BINS + 1)
        if spectrum[low:high].max() > fundamental_mag * HARMONIC_RATIO:
            return True
    return False


def energy_in_range(
    spectrum: np.ndarray,
    sample_rate: int,
    low_hz: float,
    high_hz: float,
) -> float:
    if spectrum.size == 0:
        return 0.0
    width = bin_width(spectrum, sample_rate)
    low_bin = int(np.floor(low_hz / width))
    high_bin = min(spectrum.size - 1, int(np.ceil(high_hz / width)))
    if low_bin > high_bin:
        return 0.0
    band = spectrum[low_bin : high_bin + 1]
    return float(np.sum(band * band))


def total_energy(spectrum: np.ndarray) -> float:
    return float(np.sum(spectrum * spectrum))


def db_to_linear(db: float) -> float:
    return float(10 ** (db / 20))


def _energy_ratio(
    spectrum: np.ndarray,
    sample_rate: int,
    low_hz: float,
    high_hz: float,
) -> float:
    total = total_energy(spectrum)
    if total <= 0:
        return 0.0
    return energy_in_range(spectrum, sample_rate, low_hz, high_hz) / total


def _finding(
    event_type: str,
    label: str,
    detected: bool,
    confidence: float,
    concern: ConcernLevel,
    peaks: Sequence[float],
) -> AudioFinding:
    if detected:
        details = f"{label} detected ({round(confidence * 100)}% confidence)"
    else:
        details = f"No {label.lower()} detected"
    return AudioFinding(
        detected=detected,
        event_type=event_type,
        confidence=confidence,
        concern_level=concern,
        matched_frequencies=tuple(round(freq, 1) for freq in peaks[:5]),
        details=details,
    )
