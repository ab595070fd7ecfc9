"""Demo: the client library driving the authorization server, in-process.

Everything goes through httpx.ASGITransport, so no server needs to run.

Run with:
    python scripts/demo_pkce_flow.py
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import httpx

from authclient.config import ClientSettings
from authclient.errors import RefreshFailure
from authclient.session import AuthSession
from authclient.token_store import TokenPair, TokenStore
from authserver.api.auth import DEMO_PASSWORD, DEMO_USERNAME
from authserver.main import app

SERVER = "http://testserver"


async def main() -> None:
    transport = httpx.ASGITransport(app=app)
    settings = ClientSettings(
        server_url=SERVER,
        client_id="demo",
        redirect_uri="com.demo://cb",
        token_store_path=None,
        token_store_key=TokenStore.generate_key(),
    )

    async with AuthSession.from_settings(settings, transport=transport) as session:
        session.on_authentication_required(
            lambda exc: print(f"   ⚠ authentication required: {exc}")
        )

        # ── Step 1: resource owner signs in, approves the request ───────
        request = session.begin_login()
        async with httpx.AsyncClient(transport=transport, base_url=SERVER) as browser:
            r = await browser.post(
                "/auth/login",
                json={"username": DEMO_USERNAME, "password": DEMO_PASSWORD},
            )
            print(f"1. POST /auth/login        → {r.status_code}  (session cookie set)")
            r = await browser.get(request.url)
        callback = r.headers["location"]
        print(f"   GET  /oauth/authorize   → {r.status_code}  (redirect with code)")

        # ── Step 2: code exchange ───────────────────────────────────────
        await session.complete_login(request, callback)
        print(
            "2. POST /oauth/token       → pair stored, "
            f"expires_at={session.manager.expires_at:%H:%M:%S}"
        )

        # ── Step 3: protected API call ──────────────────────────────────
        r = await session.api.get("/resource/me")
        print(f"3. GET  /resource/me       → {r.status_code}  {r.json()['message']}")

        # ── Step 4: five concurrent calls with a stale token ────────────
        pair = session.manager._pair
        assert pair is not None
        stale = datetime.now(UTC) - timedelta(seconds=1)
        session.manager.establish(
            TokenPair(pair.access_token, pair.refresh_token, stale)
        )
        before = session.manager.refresh_count
        responses = await asyncio.gather(
            *(session.api.get("/resource/me") for _ in range(5))
        )
        print(
            f"4. 5× GET /resource/me     → {[x.status_code for x in responses]}  "
            f"refreshes={session.manager.refresh_count - before}"
        )

        # ── Step 5: replaying the spent refresh token ───────────────────
        session.manager.establish(
            TokenPair(pair.access_token, pair.refresh_token, stale)
        )
        try:
            await session.api.get("/resource/me")
        except RefreshFailure:
            print("5. refresh with spent token → invalid_grant, login required")


if __name__ == "__main__":
    asyncio.run(main())
