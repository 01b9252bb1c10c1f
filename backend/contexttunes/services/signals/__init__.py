"""Signal providers — independent asynchronous sources of context.

Modules:
    base               ProviderResult variants, signal value types, provider contract
    image_provider     Frame captured by the user for the current request
    location_provider  Device fix or IP-geolocation fallback
    places_provider    Nearby venues (Google Places) or a user-tagged place
    weather_provider   Current conditions (OpenWeatherMap)
"""
