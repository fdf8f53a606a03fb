"""Map a directions-provider transit step onto STM stop ids and line codes."""

import logging
import re
from typing import Callable, Optional, Sequence

from busesuy.geo import nearest
from busesuy.models import AuthorityStop, Coordinate, Step, StmCorrelation

logger = logging.getLogger("busesuy.correlator")

STOP_MATCH_THRESHOLD_M = 200.0

LINE_DESTINATION_DELIMITER = " - "

# Display name -> line destination. Pluggable because provider naming varies.
LineDestinationStrategy = Callable[[str], Optional[str]]


def split_line_destination(line_name: str) -> Optional[str]:
    """'185 - Pocitos' -> 'Pocitos'; None when the name has no delimiter."""
    if not line_name or LINE_DESTINATION_DELIMITER not in line_name:
        return None
    destination = line_name.split(LINE_DESTINATION_DELIMITER, 1)[1].strip()
    return destination or None


def correlate(
    step: Step,
    authority_stops: Sequence[AuthorityStop],
    threshold_m: float = STOP_MATCH_THRESHOLD_M,
    destination_strategy: LineDestinationStrategy = split_line_destination,
) -> StmCorrelation:
    """Nearest authority stop to the step's departure point, within threshold_m."""
    transit = step.transit
    if transit is None:
        return StmCorrelation()

    departure = transit.departure_stop.location or step.start_location
    line = transit.line_short_name or None
    line_destination = destination_strategy(transit.line_name)

    match = nearest(departure, authority_stops, key=lambda s: s.coordinate)
    if match is None:
        logger.info(f"No authority stops to correlate line {line} departing '{transit.departure_stop.name}'")
        return StmCorrelation(line=line, line_destination=line_destination, departure_coordinate=departure)

    stop, meters = match
    if meters > threshold_m:
        # Logged for offline tuning of the threshold
        logger.info(
            f"Correlation miss for line {line} at '{transit.departure_stop.name}': "
            f"nearest stop {stop.id} is {meters:.0f}m away (> {threshold_m:.0f}m)"
        )
        return StmCorrelation(
            line=line,
            line_destination=line_destination,
            departure_coordinate=departure,
            stop_distance_m=meters,
        )

    logger.debug(f"Correlated '{transit.departure_stop.name}' to STM stop {stop.id} ({meters:.0f}m)")
    return StmCorrelation(
        stop_id=stop.id,
        line=line,
        line_destination=line_destination,
        departure_coordinate=departure,
        stop_distance_m=meters,
    )


# --- Name-based fallback, used when the stop registry returned nothing ---

KNOWN_STOP_IDS: dict[str, int] = {
    "Av. 8 de Octubre y Bv. José Batlle y Ordóñez": 2988,
    "Av. 8 de Octubre y Comercio": 3060,
    "Av. 18 de Julio y Dr. Pablo de María": 4022,
    "Av. 18 de Julio y Ejido": 3939,
    "Av. Gral. Flores y Av. Gral. San Martín": 2296,
    "Av. Millán y Clemenceau": 1826,
    "Bv. Gral. Artigas y Av. Millán": 1696,
    "Terminal Tres Cruces": 2981,
    "Av. Italia y Bv. Gral. Artigas": 2102,
    "Av. Rivera y Bv. Gral. Artigas": 3288,
    "Av. Gral. Rivera y Bv. Gral. Artigas": 3288,
    "Mercedes y Dr Javier Barrios Amorin": 3940,
    "Mercedes y Ejido": 3941,
    "Yaguaron y Av 18 de Julio": 3942,
    "Av 18 de Julio y Andes": 4204,
    "Av 18 de Julio y Convencion": 4205,
    "Plaza Independencia": 4060,
    "Ciudadela y Rincon": 4721,
    "Buenos Aires y Misiones": 4720,
    "Cerrito y Colon": 4719,
}

_CONNECTOR_RE = re.compile(r" (?:y|&) ")


def normalize_stop_name(name: str) -> str:
    return _CONNECTOR_RE.sub(" y ", name.replace(".", "").lower())


_NORMALIZED_STOP_IDS = {normalize_stop_name(k): v for k, v in KNOWN_STOP_IDS.items()}


def stop_id_from_name(stop_name: str, directory: Optional[dict[str, int]] = None) -> Optional[int]:
    """STM stop id for a provider stop name: exact normalized match, then containment."""
    if not stop_name:
        return None
    known = _NORMALIZED_STOP_IDS if directory is None else {normalize_stop_name(k): v for k, v in directory.items()}
    normalized = normalize_stop_name(stop_name)

    if normalized in known:
        return known[normalized]

    # Providers append extra text such as " (esquina ...)"
    for key, stop_id in known.items():
        if key in normalized:
            return stop_id
    return None


def correlate_by_name(step: Step, destination_strategy: LineDestinationStrategy = split_line_destination) -> StmCorrelation:
    transit = step.transit
    if transit is None:
        return StmCorrelation()

    stop_id = stop_id_from_name(transit.departure_stop.name)
    if stop_id is not None:
        logger.info(f"Name fallback matched '{transit.departure_stop.name}' to STM stop {stop_id}")
    return StmCorrelation(
        stop_id=stop_id,
        line=transit.line_short_name or None,
        line_destination=destination_strategy(transit.line_name),
        departure_coordinate=transit.departure_stop.location or step.start_location,
    )


def target_coordinate(correlation: StmCorrelation, stops: Sequence[AuthorityStop]) -> Optional[Coordinate]:
    """Where vehicles are measured against: the matched stop, else the departure point."""
    if correlation.stop_id is not None:
        for stop in stops:
            if stop.id == correlation.stop_id:
                return stop.coordinate
    return correlation.departure_coordinate
