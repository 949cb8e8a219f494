"""
Synthesized responses used when neither the network nor the cache can answer.
"""

import json
from string import Template

from worker.models import FetchResponse

OFFLINE_PAGE = Template("""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>$app_name - Offline</title>
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <style>
    body { font-family: 'Roboto', sans-serif; margin: 0; padding: 2rem; text-align: center; background-color: #f5f5f5; color: #333; }
    .container { max-width: 600px; margin: 0 auto; background: white; padding: 2rem; border-radius: 8px; box-shadow: 0 2px 10px rgba(0,0,0,0.1); }
    h1 { color: #1976d2; margin-bottom: 1rem; }
    .retry-button { background: #1976d2; color: white; border: none; padding: 12px 24px; border-radius: 4px; cursor: pointer; font-size: 1rem; margin-top: 1rem; }
  </style>
</head>
<body>
  <div class="container">
    <div class="icon">📚</div>
    <h1>$app_name - Offline Mode</h1>
    <p>It looks like you're offline. Some features may not be available.</p>
    <p>Check your internet connection and try again.</p>
    <button class="retry-button" onclick="window.location.reload()">Try Again</button>
  </div>
</body>
</html>
""")

OFFLINE_API_MESSAGE = (
    "This request failed and no cached data is available. "
    "Please try again when online."
)


def offline_fallback_html(app_name: str) -> str:
    return OFFLINE_PAGE.substitute(app_name=app_name)


def offline_page_response(app_name: str) -> FetchResponse:
    """Offline document served for HTML requests with no cached copy."""
    return FetchResponse(
        status=200,
        headers={"content-type": "text/html; charset=utf-8"},
        body=offline_fallback_html(app_name).encode("utf-8"),
    )


def offline_api_response(message: str = OFFLINE_API_MESSAGE) -> FetchResponse:
    """503 JSON body for API requests with no cached copy."""
    return FetchResponse(
        status=503,
        headers={"content-type": "application/json"},
        body=json.dumps({"error": "Offline", "message": message}).encode("utf-8"),
    )
