import math
from typing import Optional


class GeofenceService:
    EARTH_RADIUS_KM = 6371.0

    @staticmethod
    def calculate_distance_km(lat1: Optional[float], lon1: Optional[float],
                              lat2: Optional[float], lon2: Optional[float]) -> float:
        """
        Great circle distance between two points (decimal degrees), Haversine.
        Returns kilometres, or inf when any coordinate is missing.
        """
        if lat1 is None or lon1 is None or lat2 is None or lon2 is None:
            return float('inf')

        lat1, lon1, lat2, lon2 = map(float, [lat1, lon1, lat2, lon2])

        phi1 = math.radians(lat1)
        phi2 = math.radians(lat2)
        dphi = math.radians(lat2 - lat1)
        dlambda = math.radians(lon2 - lon1)

        a = math.sin(dphi / 2.0)**2 + \
            math.cos(phi1) * math.cos(phi2) * \
            math.sin(dlambda / 2.0)**2

        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

        return GeofenceService.EARTH_RADIUS_KM * c

    @staticmethod
    def travel_speed_kmh(distance_km: float, hours: float) -> float:
        if hours <= 0:
            return float('inf') if distance_km > 0 else 0.0
        return distance_km / hours
