from powerband.features.moving_average import distance_pct, rolling_average

__all__ = ["rolling_average", "distance_pct"]
