"""
Record Normalizer: converts raw source records into canonical facts for the
time-series, graph and embedding stores.

Everything here is a pure function of its input; no store or network access.
"""

import math
import re
import uuid
from typing import Any, Dict, Iterable, List, Optional

from ..models.core import (CROP, EMBEDDING, GRAPH, LOCATION, MARKET, SCHEME, SOURCE_KINDS, TIMESERIES, WEATHER,
                           EmbeddingCandidate, Fact, GraphEdge, MetricPoint)
from ..utils.timestamp_utils import to_epoch_seconds

WILDCARD = 'all'
ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, 'agrimem')

# Regional and common names resolved to the canonical crop name
CROP_ALIASES = {
    'gehun': 'wheat',
    'gehu': 'wheat',
    'paddy': 'rice',
    'dhan': 'rice',
    'chawal': 'rice',
    'makka': 'maize',
    'makki': 'maize',
    'corn': 'maize',
    'bajra': 'pearl millet',
    'jowar': 'sorghum',
    'ragi': 'finger millet',
    'kapas': 'cotton',
    'soya': 'soybean',
    'soyabean': 'soybean',
    'arhar': 'tur',
    'toor': 'tur',
    'pigeon pea': 'tur',
    'chana': 'gram',
    'chickpea': 'gram',
    'bengal gram': 'gram',
    'moong': 'green gram',
    'urad': 'black gram',
    'sarson': 'mustard',
    'rapeseed': 'mustard',
    'moongphali': 'groundnut',
    'peanut': 'groundnut',
    'ganna': 'sugarcane',
    'pyaz': 'onion',
    'pyaj': 'onion',
    'kanda': 'onion',
    'aloo': 'potato',
    'tamatar': 'tomato',
}

_WHITESPACE_RE = re.compile(r'\s+')


class MalformedRecordError(Exception):
    """Raised when a raw record cannot be normalized. Unrecoverable for that record."""
    error_kind = 'MalformedRecord'


class UnsupportedSourceKindError(Exception):
    """Raised for a source kind the normalizer does not know."""
    error_kind = 'UnsupportedSourceKind'


def normalize_identifier(text: Any) -> str:
    """Lower-case, trim and collapse inner whitespace of a free-text identifier."""
    if text is None:
        return ''
    return _WHITESPACE_RE.sub(' ', str(text).strip().lower())


def normalize_crop_name(name: Any) -> str:
    """Normalize a crop name and resolve known aliases (``Gehun`` -> ``wheat``)."""
    crop = normalize_identifier(name)
    return CROP_ALIASES.get(crop, crop)


def weather_metric_id(district: str) -> str:
    return f'weather:combined:{normalize_identifier(district)}'


def market_metric_id(crop: str, market_area: Optional[str] = WILDCARD) -> str:
    area = normalize_identifier(market_area) or WILDCARD
    return f'market:price:{normalize_crop_name(crop)}:{area}'


def entry_id(kind: str, identity: str) -> str:
    """Deterministic embedding entry id for a source record identity."""
    return f'{kind}:{uuid.uuid5(ID_NAMESPACE, f"{kind}:{normalize_identifier(identity)}")}'


def _first(record: Dict[str, Any], *names: str) -> Any:
    for name in names:
        value = record.get(name)
        if value is not None and value != '':
            return value
    return None


def _as_list(value: Any) -> List[Any]:
    if value is None or value == '':
        return []
    if isinstance(value, (list, tuple)):
        return [v for v in value if v is not None and v != '']
    if isinstance(value, str):
        return [v for v in (part.strip() for part in value.split(',')) if v]
    return [value]


def _as_float(value: Any, field: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise MalformedRecordError(f'Field {field!r} is not numeric: {value!r}')
    if not math.isfinite(number):
        raise MalformedRecordError(f'Field {field!r} is not a finite number: {value!r}')
    return number


def _optional_float(record: Dict[str, Any], *names: str) -> Optional[float]:
    value = _first(record, *names)
    return None if value is None else _as_float(value, names[0])


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', 'yes', 'y', '1')
    return bool(value)


def _timestamp(record: Dict[str, Any]) -> int:
    raw = _first(record, 'timestamp', 'date', 'arrival_date', 'reading_date')
    if raw is None:
        raise MalformedRecordError('Record has no timestamp or date')
    try:
        return to_epoch_seconds(raw)
    except ValueError as e:
        raise MalformedRecordError(str(e))


def _node_key(item: Any) -> str:
    if isinstance(item, dict):
        return normalize_identifier(_first(item, 'id', 'name'))
    return normalize_identifier(item)


def record_identity(source_kind: str, record: Any) -> Optional[str]:
    """Best-effort human-readable identity of a raw record, for batch reports."""
    if not isinstance(record, dict):
        return None
    if source_kind in (CROP, SCHEME):
        value = _first(record, 'id', 'crop_id', 'scheme_id', 'name')
    elif source_kind == MARKET:
        value = _first(record, 'crop', 'commodity')
    else:
        value = _first(record, 'district', 'location')
    return None if value is None else str(value)


def normalize(source_kind: str, record: Dict[str, Any]) -> List[Fact]:
    """
    Convert one raw record into canonical facts.

    Args:
        source_kind: weather, market, crop, scheme or location
        record: Raw record as decoded from the source

    Returns:
        List of Fact objects tagged with their destination store

    Raises:
        UnsupportedSourceKindError: If the source kind is unknown
        MalformedRecordError: If the record lacks required fields
    """
    kind = normalize_identifier(source_kind)
    if kind not in SOURCE_KINDS:
        raise UnsupportedSourceKindError(f'Unsupported source kind: {source_kind!r}')
    if not isinstance(record, dict):
        raise MalformedRecordError(f'Record must be an object, got {type(record).__name__}')

    if kind == WEATHER:
        return _normalize_weather(record)
    if kind == MARKET:
        return _normalize_market(record)
    if kind == CROP:
        return _normalize_crop(record)
    if kind == SCHEME:
        return _normalize_scheme(record)
    return _normalize_location(record)


def _readings(record: Dict[str, Any], list_field: str) -> Iterable[Dict[str, Any]]:
    nested = record.get(list_field)
    if not nested:
        yield record
        return
    if not isinstance(nested, list):
        raise MalformedRecordError(f'Field {list_field!r} must be a list')
    shared = {k: v for k, v in record.items() if k != list_field}
    for reading in nested:
        if not isinstance(reading, dict):
            raise MalformedRecordError(f'Entries of {list_field!r} must be objects')
        yield {**shared, **reading}


def _normalize_weather(record: Dict[str, Any]) -> List[Fact]:
    facts = []
    for reading in _readings(record, 'readings'):
        district = _first(reading, 'district', 'location', 'city')
        if not normalize_identifier(district):
            raise MalformedRecordError('Weather reading has no district')

        temp_max = _optional_float(reading, 'temp_max', 'max_temp', 'temperature_max')
        temp_min = _optional_float(reading, 'temp_min', 'min_temp', 'temperature_min')
        temperature = _optional_float(reading, 'temperature', 'temp', 'temp_c')
        if temperature is None:
            known = [t for t in (temp_max, temp_min) if t is not None]
            if not known:
                raise MalformedRecordError('Weather reading has no temperature')
            temperature = sum(known) / len(known)

        attributes = {'temperature': temperature}
        for name, value in (('temp_max', temp_max), ('temp_min', temp_min),
                            ('rainfall_mm', _optional_float(reading, 'rainfall_mm', 'rainfall', 'precipitation', 'precip_mm')),
                            ('humidity', _optional_float(reading, 'humidity')),
                            ('wind_kph', _optional_float(reading, 'wind_kph', 'wind_speed'))):
            if value is not None:
                attributes[name] = value
        condition = _first(reading, 'condition', 'description')
        if condition is not None:
            attributes['condition'] = str(condition)

        facts.append(
            Fact(store=TIMESERIES,
                 payload=MetricPoint(metric_id=weather_metric_id(district),
                                     timestamp=_timestamp(reading),
                                     value=temperature,
                                     attributes=attributes)))
    return facts


def _normalize_market(record: Dict[str, Any]) -> List[Fact]:
    facts = []
    for reading in _readings(record, 'prices'):
        crop = normalize_crop_name(_first(reading, 'crop', 'commodity'))
        if not crop:
            raise MalformedRecordError('Market record has no crop')

        price = _first(reading, 'price', 'modal_price')
        if price is None:
            raise MalformedRecordError(f'Market record for {crop} has no price')

        market_area = _first(reading, 'market_area', 'market') or WILDCARD
        attributes = {'crop': crop, 'market_area': normalize_identifier(market_area), 'unit': reading.get('unit', 'INR/quintal')}
        for name in ('min_price', 'max_price'):
            value = _optional_float(reading, name)
            if value is not None:
                attributes[name] = value
        for name in ('state', 'district', 'variety'):
            if reading.get(name):
                attributes[name] = str(reading[name])

        facts.append(
            Fact(store=TIMESERIES,
                 payload=MetricPoint(metric_id=market_metric_id(crop, market_area),
                                     timestamp=_timestamp(reading),
                                     value=_as_float(price, 'price'),
                                     attributes=attributes)))
    return facts


def _suitability_properties(source: Dict[str, Any], name: str) -> Dict[str, Any]:
    properties = {'name': name}
    seasons = [normalize_identifier(s) for s in _as_list(_first(source, 'seasons', 'season'))]
    if seasons:
        properties['season'] = seasons
    soil_types = [normalize_identifier(s) for s in _as_list(_first(source, 'soil_types', 'soil_type'))]
    if soil_types:
        properties['soil_types'] = soil_types
    if source.get('drought_sensitive') is not None:
        properties['drought_sensitive'] = _as_bool(source['drought_sensitive'])
    if source.get('water_requirement'):
        properties['water_requirement'] = normalize_identifier(source['water_requirement'])
    return properties


def _normalize_crop(record: Dict[str, Any]) -> List[Fact]:
    crop_id = normalize_identifier(_first(record, 'id', 'crop_id'))
    if not crop_id:
        raise MalformedRecordError('Crop record has no stable id')

    name = str(_first(record, 'name') or crop_id)
    crop_node = f'crop:{crop_id}'
    facts = []

    seasons = _as_list(_first(record, 'seasons', 'season'))
    for season in seasons:
        facts.append(Fact(store=GRAPH, payload=GraphEdge(crop_node, 'grown_during', f'season:{normalize_identifier(season)}')))

    pests = _as_list(record.get('pests'))
    for pest in pests:
        facts.append(Fact(store=GRAPH, payload=GraphEdge(crop_node, 'susceptible_to', f'pest:{_node_key(pest)}',
                                                         {'name': pest.get('name') if isinstance(pest, dict) else str(pest)})))

    diseases = _as_list(record.get('diseases'))
    for disease in diseases:
        facts.append(Fact(store=GRAPH, payload=GraphEdge(crop_node, 'affected_by', f'disease:{_node_key(disease)}',
                                                         {'name': disease.get('name') if isinstance(disease, dict) else str(disease)})))

    properties = _suitability_properties(record, name)
    for district in _as_list(_first(record, 'districts', 'suitable_districts')):
        location_node = f'location:{normalize_identifier(district)}'
        facts.append(Fact(store=GRAPH, payload=GraphEdge(location_node, 'suitable_for', crop_node, properties)))

    def _names(items: List[Any]) -> str:
        return ', '.join(str(i.get('name', i.get('id'))) if isinstance(i, dict) else str(i) for i in items)

    text_parts = [f'{name} ({crop_id})']
    if seasons:
        text_parts.append(f'Seasons: {_names(seasons)}')
    if properties.get('soil_types'):
        text_parts.append(f"Soil types: {', '.join(properties['soil_types'])}")
    if pests:
        text_parts.append(f'Pests: {_names(pests)}')
    if diseases:
        text_parts.append(f'Diseases: {_names(diseases)}')
    if record.get('description'):
        text_parts.append(str(record['description']).strip())

    facts.append(
        Fact(store=EMBEDDING,
             payload=EmbeddingCandidate(id=entry_id(CROP, crop_id),
                                        text='. '.join(text_parts),
                                        metadata={
                                            'kind': CROP,
                                            'crop_id': crop_id,
                                            'name': name,
                                            'crop_type': normalize_crop_name(name),
                                            'season': properties.get('season', [])
                                        })))
    return facts


def _normalize_scheme(record: Dict[str, Any]) -> List[Fact]:
    name = _first(record, 'name', 'scheme_name')
    if not name or not str(name).strip():
        raise MalformedRecordError('Scheme record has no name')
    name = str(name).strip()

    scheme_id = normalize_identifier(_first(record, 'id', 'scheme_id')) or normalize_identifier(name)
    state = str(_first(record, 'state') or WILDCARD).strip()
    farmer_types = [normalize_identifier(v) for v in _as_list(_first(record, 'farmer_types', 'farmer_type'))] or [WILDCARD]
    crop_types = [normalize_crop_name(v) for v in _as_list(_first(record, 'crops', 'crop_types', 'crop_type'))] or [WILDCARD]
    eligibility = str(_first(record, 'eligibility', 'eligibility_description') or '').strip()
    benefits = str(_first(record, 'benefits') or '').strip()

    text_parts = [name]
    if eligibility:
        text_parts.append(f'Eligibility: {eligibility}')
    if benefits:
        text_parts.append(f'Benefits: {benefits}')
    text_parts.append(f"Crops: {', '.join(crop_types)}")
    text_parts.append(f"Farmer types: {', '.join(farmer_types)}")
    text_parts.append(f'State: {state}')

    metadata = {
        'kind': SCHEME,
        'scheme_id': scheme_id,
        'name': name,
        'state': normalize_identifier(state),
        'farmer_type': farmer_types,
        'crop_type': crop_types,
        'eligibility': eligibility,
        'benefits': benefits
    }
    for optional in ('how_to_apply', 'url'):
        if record.get(optional):
            metadata[optional] = str(record[optional])

    candidate = EmbeddingCandidate(id=entry_id(SCHEME, scheme_id), text='. '.join(text_parts), metadata=metadata)
    facts = [Fact(store=EMBEDDING, payload=candidate)]
    if normalize_identifier(state) != WILDCARD:
        facts.append(
            Fact(store=GRAPH,
                 payload=GraphEdge(f'state:{normalize_identifier(state)}', 'offers_scheme', f'scheme:{scheme_id}', {'name': name})))
    return facts


def _normalize_location(record: Dict[str, Any]) -> List[Fact]:
    district = normalize_identifier(_first(record, 'district', 'location'))
    if not district:
        raise MalformedRecordError('Location record has no district')

    facts = []
    for crop in _as_list(_first(record, 'crops', 'suitable_crops')):
        if not isinstance(crop, dict):
            crop = {'id': crop}
        crop_id = normalize_identifier(_first(crop, 'crop_id', 'id', 'crop'))
        if not crop_id:
            raise MalformedRecordError(f'Location {district} lists a crop without an id')
        properties = _suitability_properties(crop, str(_first(crop, 'name') or crop_id))
        facts.append(Fact(store=GRAPH, payload=GraphEdge(f'location:{district}', 'suitable_for', f'crop:{crop_id}', properties)))
    return facts
