import csv
import logging
import math
import re
from pathlib import Path
from typing import Optional

from community_context.core.logger import logs
from community_context.models.community_model import Location

ZIP_PATTERN = re.compile(r"^\d{5}$")
EARTH_RADIUS_KM = 6371.0


def is_valid_zip(value: Optional[str]) -> bool:
    return bool(value) and bool(ZIP_PATTERN.match(value.strip()))


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def min_distance_km(lat: float, lng: float, centers: list[tuple[float, float]]) -> Optional[float]:
    if not centers:
        return None
    return min(haversine_km(lat, lng, c_lat, c_lng) for c_lat, c_lng in centers)


def _normalize_city(value: str) -> str:
    return re.sub(r"\s+", " ", value.strip().lower())


class LocationResolver:
    """
    Resolves ZIP codes and "City, ST" names against a uscities.csv dataset
    (columns: city, state_id, lat, lng, population, zips).
    """

    def __init__(self, dataset_path: str):
        self.dataset_path = Path(dataset_path)
        self._by_zip: Optional[dict[str, list[dict]]] = None
        self._by_city: dict[tuple[str, str], dict] = {}

    def _load(self) -> dict[str, list[dict]]:
        if self._by_zip is not None:
            return self._by_zip

        self._by_zip = {}
        if not self.dataset_path.exists():
            logs.log(logging.ERROR, f"City dataset not found at {self.dataset_path}")
            return self._by_zip

        with self.dataset_path.open(newline="", encoding="utf-8") as f:
            for row in csv.DictReader(f):
                try:
                    record = {
                        "city": row["city"].strip(),
                        "state": row["state_id"].strip().upper(),
                        "lat": float(row["lat"]),
                        "lng": float(row["lng"]),
                        "population": int(float(row.get("population") or 0)),
                    }
                except (KeyError, ValueError):
                    continue

                city_key = (_normalize_city(record["city"]), record["state"])
                existing = self._by_city.get(city_key)
                if existing is None or record["population"] > existing["population"]:
                    self._by_city[city_key] = record
                for zip_code in (row.get("zips") or "").split():
                    self._by_zip.setdefault(zip_code, []).append(record)

        logs.log(logging.INFO, f"Loaded city dataset: {len(self._by_city)} cities, {len(self._by_zip)} zips")
        return self._by_zip

    def resolve(
        self,
        zip_or_query: str,
        preferred_city: Optional[str] = None,
        preferred_state: Optional[str] = None,
    ) -> Optional[Location]:
        by_zip = self._load()
        value = (zip_or_query or "").strip()

        if is_valid_zip(value):
            candidates = by_zip.get(value, [])
            if not candidates:
                return None
            record = self._pick(candidates, preferred_city, preferred_state)
            return Location(zip_code=value, **record)

        record = self.find_city(value, preferred_state)
        if record is None:
            return None
        return Location(zip_code="", **record)

    def find_city(self, query: str, default_state: Optional[str] = None) -> Optional[dict]:
        self._load()
        parts = [p.strip() for p in query.split(",") if p.strip()]
        if not parts:
            return None
        city = _normalize_city(parts[0])
        state = (parts[1] if len(parts) > 1 else default_state or "").strip().upper()[:2]
        if state:
            return self._by_city.get((city, state))
        matches = [r for (c, _), r in self._by_city.items() if c == city]
        return max(matches, key=lambda r: r["population"]) if matches else None

    def resolve_service_areas(self, areas: Optional[list[str]], default_state: Optional[str] = None) -> list[tuple[float, float]]:
        centers = []
        for area in areas or []:
            record = self.find_city(area, default_state)
            if record is None:
                logs.log(logging.WARNING, f"Service area '{area}' could not be resolved")
                continue
            centers.append((record["lat"], record["lng"]))
        return centers

    @staticmethod
    def _pick(candidates: list[dict], preferred_city: Optional[str], preferred_state: Optional[str]) -> dict:
        if preferred_city:
            city = _normalize_city(preferred_city)
            state = (preferred_state or "").strip().upper()
            for record in candidates:
                if _normalize_city(record["city"]) == city and (not state or record["state"] == state):
                    return record
        return max(candidates, key=lambda r: r["population"])
