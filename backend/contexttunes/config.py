from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Recommendation service
    recommendation_api_url: str = "https://api.contexttunes.app/v1/recommendations"
    recommendation_api_key: str = ""

    # Google Places (New) — nearby search
    places_api_key: str = ""
    places_base_url: str = "https://places.googleapis.com/v1"
    places_search_radius_m: float = 300.0
    places_max_results: int = 10

    # OpenWeatherMap — current conditions
    weather_api_key: str = ""
    weather_base_url: str = "https://api.openweathermap.org/data/2.5"

    # IP geolocation fallback when the device hands over no fix
    geolocation_url: str = "http://ip-api.com/json"

    # Timeouts
    provider_timeout_seconds: float = 5.0
    request_timeout_seconds: float = 10.0

    # User-tagged places: tag -> "lat,lon"
    tagged_places: dict[str, str] = {}
    tagged_place_radius_m: float = 100.0

    # CORS
    cors_origins: str = "http://localhost:5173"

    log_level: str = "INFO"

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",")]

    model_config = {
        "env_prefix": "CONTEXTTUNES_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
