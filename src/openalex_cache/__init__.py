"""Development-time response cache for the OpenAlex API."""
