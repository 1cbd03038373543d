"""
Hotel Directory
Static reference list of London hotels, seeded into the key-value store on
first use. Visits point at hotels by id.
"""

import logging
import random
from typing import List, Optional

from rapidfuzz import fuzz

from visittrack.db.kv import KeyValueStore, load_json, save_json
from visittrack.models import HotelRecord

logger = logging.getLogger(__name__)

HOTELS_KEY = 'visittrack_hotels'
DIRECTORY_SIZE = 111

_SEED_HOTELS = [
    HotelRecord('hotel_001', 'THE PARK TOWER KNIGHTSBRIDGE', 'Knightsbridge',
                '101 Knightsbridge, London SW1X 7RN', '+44 20 7235 8050',
                'reservations@theparktowerknightsbridge.com', 298372.50, 1842),
    HotelRecord('hotel_002', "CLARIDGE'S", 'Mayfair',
                'Brook Street, London W1K 4HR', '+44 20 7629 8860',
                'info@claridges.co.uk', 248770.00, 1654),
    HotelRecord('hotel_003', 'GROSVENOR HOUSE SUITES', 'Mayfair',
                '86-90 Park Lane, London W1K 7TN', '+44 20 7499 6363',
                'reservations@grosvenorhouse-suites.com', 247504.00, 1598),
    HotelRecord('hotel_004', 'THE LANGHAM, LONDON', 'Marylebone',
                '1C Portland Place, London W1B 1JA', '+44 20 7636 1000',
                'tllon.info@langhamhotels.com', 143191.00, 987),
    HotelRecord('hotel_005', 'JUMEIRAH CARLTON TOWER', 'Knightsbridge',
                'Cadogan Place, London SW1X 9PY', '+44 20 7235 1234',
                'jctinfo@jumeirah.com', 137940.00, 876),
    HotelRecord('hotel_006', 'THE RITZ LONDON', 'Piccadilly',
                '150 Piccadilly, London W1J 9BR', '+44 20 7493 8181',
                'enquire@theritzlondon.com', 111049.00, 743),
    HotelRecord('hotel_007', 'THE DORCHESTER', 'Mayfair',
                'Park Lane, London W1K 1QA', '+44 20 7629 8888',
                'reservations@thedorchester.com', 98765.00, 654),
    HotelRecord('hotel_008', 'THE SAVOY', 'Covent Garden',
                'Strand, London WC2R 0EU', '+44 20 7836 4343',
                'info@thesavoylondon.com', 87432.00, 567),
    HotelRecord('hotel_009', 'FOUR SEASONS HOTEL LONDON AT MAYFAIR', 'Mayfair',
                'Hamilton Place, Park Lane, London W1J 7DR', '+44 20 7499 0888',
                'reservations.london@fourseasons.com', 76543.00, 498),
    HotelRecord('hotel_010', 'THE BERKELEY', 'Knightsbridge',
                'Wilton Place, London SW1X 7RL', '+44 20 7235 6000',
                'info@the-berkeley.co.uk', 65432.00, 432),
]

_FILLER_NAMES = [
    'THE LONDON EDITION', 'COVENT GARDEN HOTEL', 'THE SOHO HOTEL', "HAZLITT'S HOTEL",
    'THE FITZROY LONDON', 'HOTEL 41', 'THE MILESTONE HOTEL', 'THE PELHAM HOTEL',
    'THE WESTMINSTER LONDON', 'THE GRAND AT TRAFALGAR SQUARE', 'ROSEWOOD LONDON',
    'THE CORINTHIA LONDON', 'SHANGRI-LA HOTEL AT THE SHARD', 'MANDARIN ORIENTAL HYDE PARK',
    'THE CONNAUGHT', "BROWN'S HOTEL", 'THE ZETTER TOWNHOUSE', 'CHARLOTTE STREET HOTEL',
    'THE BEAUMONT', 'THE STAFFORD LONDON', 'DUKES LONDON', 'THE CHESTERFIELD MAYFAIR',
    'FLEMINGS MAYFAIR', 'THE MAY FAIR HOTEL', 'PARK LANE HOTEL',
    'THE INTERCONTINENTAL LONDON PARK LANE', 'HILTON LONDON PARK LANE', 'THE LONDONER',
    'THE STANDARD LONDON', 'MONDRIAN LONDON', 'SEA CONTAINERS LONDON',
    'PARK PLAZA LONDON RIVERBANK', 'THE ROYAL HORSEGUARDS', 'THE RUBENS AT THE PALACE',
    'THE GORING', 'THE LANESBOROUGH', 'THE BULGARI HOTEL', 'THE CADOGAN',
    'THE SLOANE SQUARE HOTEL', 'THE DRAYCOTT HOTEL', 'THE CAPITAL HOTEL',
    'THE KNIGHTSBRIDGE HOTEL', 'THE EGERTON HOUSE HOTEL', 'THE LEVIN HOTEL',
    'THE HARI LONDON', 'JUMEIRAH LOWNDES HOTEL', 'THE WELLESLEY', 'THE ATHENAEUM',
    'THE METROPOLITAN', 'THE WASHINGTON MAYFAIR', 'THE BENTLEY LONDON',
    'THE MONTCALM MARBLE ARCH', 'THE LEONARD HOTEL', 'THE SUMNER HOTEL',
    'THE MONTAGUE ON THE GARDENS', 'THE ACADEMY LONDON', 'THE GEORGIAN HOTEL',
    'THE TAVISTOCK HOTEL', 'THE RUSSELL HOTEL', 'THE PRESIDENT HOTEL',
    'THE ROYAL NATIONAL HOTEL', 'THE IMPERIAL HOTEL', 'THE STRAND PALACE HOTEL',
    'THE WALDORF HILTON', 'THE ALDWYCH HOTEL', 'THE RENAISSANCE CHANCERY COURT',
    'THE ROOKERY HOTEL', 'THE MALMAISON LONDON', 'THE HOXTON HOLBORN',
    'THE DIXON AUTOGRAPH COLLECTION', 'THE HILTON LONDON TOWER BRIDGE',
    'THE LONDON BRIDGE HOTEL', 'THE NOVOTEL LONDON BLACKFRIARS', 'THE CROWNE PLAZA LONDON',
    'THE FIELDING HOTEL', 'THE SEVEN DIALS HOTEL', 'THE HENRIETTA HOTEL',
    'THE Z HOTEL PICCADILLY', 'THE PICCADILLY LONDON WEST END',
    'THE SHAFTESBURY PREMIER LONDON', 'THE THISTLE PICCADILLY',
    'THE HILTON LONDON GREEN PARK', 'THE PARK LANE MEWS HOTEL', 'THE GROSVENOR HOTEL',
    'THE VICTORIA PALACE HOTEL', 'THE LUNA SIMONE HOTEL', 'THE MELBOURNE HOUSE HOTEL',
    'THE SANCTUARY HOUSE HOTEL',
]

_FILLER_AREAS = [
    'Mayfair', 'Knightsbridge', 'Covent Garden', 'Soho', 'Fitzrovia', 'Marylebone',
    'Bloomsbury', "King's Cross", 'Shoreditch', 'Southwark', 'Borough', 'Bankside',
    'Westminster', 'Victoria', 'Pimlico', 'Belgravia', 'Chelsea', 'Kensington',
    'South Kensington', "Earl's Court", 'Paddington', 'Bayswater', 'Notting Hill',
    'Holland Park', 'Hammersmith', 'Fulham', 'Clapham', 'Battersea', 'Vauxhall',
]


def _filler_hotels(count: int, seed: int = 111) -> List[HotelRecord]:
    """Deterministic filler entries so the directory looks the same on every install."""
    rng = random.Random(seed)
    hotels = []
    for i in range(count):
        base = _FILLER_NAMES[i % len(_FILLER_NAMES)]
        cycle = i // len(_FILLER_NAMES)
        area = _FILLER_AREAS[i % len(_FILLER_AREAS)]
        slug = ''.join(ch for ch in base.lower() if ch.isalpha())
        hotels.append(HotelRecord(
            id=f"hotel_{i + len(_SEED_HOTELS) + 1:03d}",
            name=f"{base} {cycle + 1}" if cycle else base,
            area=area,
            address=f"{rng.randint(1, 200)} {area} Street, London",
            phone=f"+44 20 {rng.randint(1000, 9999)} {rng.randint(1000, 9999)}",
            email=f"info@{slug}.com",
            revenue=float(rng.randint(10000, 59999)),
            bookings=rng.randint(100, 599),
        ))
    return hotels


def default_hotels() -> List[HotelRecord]:
    return list(_SEED_HOTELS) + _filler_hotels(DIRECTORY_SIZE - len(_SEED_HOTELS))


def ensure_hotels(kv: KeyValueStore) -> int:
    """Seed the directory when it is missing or empty. Returns the number of hotels stored."""
    hotels = load_json(kv, HOTELS_KEY, default=[])
    if isinstance(hotels, list) and hotels:
        return len(hotels)
    seeded = default_hotels()
    save_json(kv, HOTELS_KEY, [h.to_dict() for h in seeded])
    logger.info(f"Initialized hotel directory with {len(seeded)} hotels")
    return len(seeded)


def get_hotels(kv: KeyValueStore) -> List[HotelRecord]:
    hotels = load_json(kv, HOTELS_KEY, default=[])
    if not isinstance(hotels, list):
        return []
    return [HotelRecord.from_dict(h) for h in hotels if isinstance(h, dict)]


def get_hotel(kv: KeyValueStore, hotel_id: str) -> Optional[HotelRecord]:
    for hotel in get_hotels(kv):
        if hotel.id == hotel_id:
            return hotel
    logger.debug(f"get_hotel: hotel_id={hotel_id} not found")
    return None


def search_hotels(kv: KeyValueStore, query: str, fuzzy_threshold: int = 80) -> List[HotelRecord]:
    """
    Case-insensitive substring search over name, area, address, phone and email.
    If nothing matches, fall back to fuzzy name matching (rapidfuzz ratio,
    best match first) so small typos still find the hotel.
    """
    term = (query or '').strip().lower()
    if not term:
        return []
    hotels = get_hotels(kv)

    matches = [
        h for h in hotels
        if any(term in (value or '').lower() for value in (h.name, h.area, h.address, h.phone, h.email))
    ]
    if matches:
        return matches

    scored = []
    for hotel in hotels:
        score = fuzz.ratio(term, hotel.name.lower())
        if score >= fuzzy_threshold:
            scored.append((score, hotel))
    scored.sort(key=lambda pair: pair[0], reverse=True)
    if scored:
        logger.debug(f"search_hotels: no substring match for '{query}', {len(scored)} fuzzy matches")
    return [hotel for _, hotel in scored]
