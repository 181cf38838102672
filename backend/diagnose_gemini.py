"""
Gemini API diagnostic tool.

Calls generateContent and the model listing on every configured API version
and prints what comes back. Usage: python diagnose_gemini.py
"""

import asyncio
import sys

import httpx

from config import settings
from providers import GEMINI_BASE_URL


def mask_key(key: str) -> str:
    if len(key) <= 20:
        return "***"
    return f"{key[:15]}...{key[-5:]}"


def diagnostic_endpoints() -> list[dict]:
    endpoints = []
    for version in settings.gemini_api_versions:
        endpoints.append({
            "name": f"generateContent {version}",
            "method": "POST",
            "url": f"{GEMINI_BASE_URL}/{version}/models/{settings.gemini_model}:generateContent",
        })
        endpoints.append({
            "name": f"List Models {version}",
            "method": "GET",
            "url": f"{GEMINI_BASE_URL}/{version}/models",
        })
    return endpoints


async def run_diagnostics(client: httpx.AsyncClient) -> list[tuple[str, int]]:
    results = []
    for endpoint in diagnostic_endpoints():
        print("\n" + "=" * 60)
        print(f"Testing: {endpoint['name']}")
        print(f"URL: {endpoint['url']}")
        print("=" * 60)

        body = {"contents": [{"parts": [{"text": "Hello"}]}]} if endpoint["method"] == "POST" else None
        try:
            resp = await client.request(
                endpoint["method"],
                endpoint["url"],
                params={"key": settings.gemini_api_key},
                json=body,
            )
        except httpx.HTTPError as e:
            print(f"Request failed: {e}")
            results.append((endpoint["name"], 0))
            continue

        print(f"Response Status: {resp.status_code} {resp.reason_phrase}")
        print(resp.text[:500])
        results.append((endpoint["name"], resp.status_code))
    return results


async def main() -> int:
    print("Gemini API Diagnostic Tool\n")
    if not settings.gemini_configured:
        print("API Key: NOT FOUND (set GEMINI_API_KEY)")
        return 1
    print(f"API Key: {mask_key(settings.gemini_api_key)}")
    print(f"Model: {settings.gemini_model}")

    async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as client:
        results = await run_diagnostics(client)

    print("\nSummary:")
    for name, code in results:
        print(f"   {'OK ' if code == 200 else 'ERR'} {name} ({code or 'no response'})")
    return 0 if any(code == 200 for _, code in results) else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
