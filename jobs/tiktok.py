"""TikTok OAuth (authorization-code flow) and pull-by-URL publishing."""
from datetime import datetime, timedelta
from urllib.parse import urlencode

import requests
from django.conf import settings
from django.core import signing
from django.utils.crypto import get_random_string
from django.utils import timezone
from loguru import logger

from .exceptions import SocialPublishError, TikTokError
from .models import SocialAccount

AUTHORIZE_URL = "https://www.tiktok.com/v2/auth/authorize/"
TOKEN_URL = "https://open.tiktokapis.com/v2/oauth/token/"
USER_INFO_URL = "https://open.tiktokapis.com/v2/user/info/"
PUBLISH_INIT_URL = "https://open.tiktokapis.com/v2/post/publish/inbox/video/init/"

USER_FIELDS = ["open_id", "display_name", "avatar_url"]
MAX_TITLE_LEN = 2200
STATE_MAX_AGE = 600
_STATE_SALT = "tiktok-oauth-state"


# -----------------------------------------------------
# OAuth
# -----------------------------------------------------
def make_state() -> str:
    return signing.TimestampSigner(salt=_STATE_SALT).sign(get_random_string(16))


def verify_state(state: str) -> bool:
    try:
        signing.TimestampSigner(salt=_STATE_SALT).unsign(state, max_age=STATE_MAX_AGE)
    except signing.BadSignature:
        return False
    return True


def build_authorize_url(state: str) -> str:
    params = {
        "client_key": settings.TIKTOK_CLIENT_KEY,
        "scope": ",".join(settings.TIKTOK_SCOPES),
        "response_type": "code",
        "redirect_uri": settings.TIKTOK_REDIRECT_URI,
        "state": state,
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


def _json(r: requests.Response) -> dict:
    try:
        data = r.json()
    except ValueError:
        raise TikTokError(f"TikTok returned non-JSON (HTTP {r.status_code})", status=r.status_code)
    return data if isinstance(data, dict) else {"data": data}


def _error_obj(data: dict) -> dict:
    # v2 endpoints send {"error": {"code", "message"}}; older ones a bare string
    error = data.get("error")
    if isinstance(error, dict):
        return error
    if error:
        return {"code": str(error), "message": data.get("error_description") or str(error)}
    return {}


def _token_request(form: dict) -> dict:
    form = {
        "client_key": settings.TIKTOK_CLIENT_KEY,
        "client_secret": settings.TIKTOK_CLIENT_SECRET,
        **form,
    }
    try:
        r = requests.post(
            TOKEN_URL,
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise TikTokError(f"token request failed: {e}") from e

    data = _json(r)
    if not r.ok or not data.get("access_token"):
        msg = data.get("error_description") or data.get("error") or f"HTTP {r.status_code}"
        raise TikTokError(f"token request rejected: {msg}", status=r.status_code, payload=data)
    return data


def exchange_code(code: str) -> dict:
    """Trade an authorization code for {access_token, refresh_token, open_id, expires_in, scope, ...}."""
    return _token_request({
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": settings.TIKTOK_REDIRECT_URI,
    })


def refresh_access_token(refresh_token: str) -> dict:
    return _token_request({
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
    })


def fetch_user_info(access_token: str) -> dict:
    # user/info rejects requests without an explicit field list
    try:
        r = requests.get(
            USER_INFO_URL,
            params={"fields": ",".join(USER_FIELDS)},
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise TikTokError(f"user info request failed: {e}") from e

    data = _json(r)
    error = _error_obj(data)
    if not r.ok or (error.get("code") not in (None, "ok")):
        raise TikTokError(
            f"user info rejected: {error.get('message') or error.get('code') or r.status_code}",
            status=r.status_code,
            payload=data,
        )
    body = data.get("data")
    user = body.get("user") if isinstance(body, dict) else None
    return user if isinstance(user, dict) else {}


def _expiry(seconds) -> datetime | None:
    if not seconds:
        return None
    return timezone.now() + timedelta(seconds=int(seconds))


def upsert_account(tokens: dict, user: dict | None = None) -> SocialAccount:
    """Create or refresh the stored account for tokens["open_id"]."""
    user = user or {}
    open_id = tokens.get("open_id") or user.get("open_id")
    if not open_id:
        raise TikTokError("token response carried no open_id", payload=tokens)

    defaults = {
        "access_token": tokens["access_token"],
        "refresh_token": tokens.get("refresh_token", ""),
        "scope": tokens.get("scope", ""),
        "expires_at": _expiry(tokens.get("expires_in")),
        "refresh_expires_at": _expiry(tokens.get("refresh_expires_in")),
    }
    if user.get("display_name"):
        defaults["display_name"] = user["display_name"]
    if user.get("avatar_url"):
        defaults["avatar_url"] = user["avatar_url"]

    account, created = SocialAccount.objects.update_or_create(
        provider=SocialAccount.Provider.TIKTOK,
        open_id=open_id,
        defaults=defaults,
    )
    logger.info("[TIKTOK] {} account {}", "connected" if created else "refreshed", open_id)
    return account


def ensure_fresh_token(account: SocialAccount) -> str:
    """
    Return a usable access token for account, refreshing it when it is
    within the leeway of expiry. Raises SocialPublishError when the user has
    to go through OAuth again.
    """
    if not account.access_token_expired(settings.TIKTOK_TOKEN_LEEWAY_SECONDS):
        return account.access_token
    if not account.refresh_token_usable():
        raise SocialPublishError("access token expired; re-authentication required")

    try:
        tokens = refresh_access_token(account.refresh_token)
    except TikTokError as e:
        raise SocialPublishError(f"token refresh failed; re-authentication required ({e})") from e
    tokens.setdefault("open_id", account.open_id)
    account = upsert_account(tokens)
    return account.access_token


# -----------------------------------------------------
# Publishing
# -----------------------------------------------------
def build_post_title(caption: str = "", hashtags=None) -> str:
    tags = " ".join(f"#{t}" for t in (hashtags or []))
    title = " ".join(p for p in (caption.strip(), tags) if p)
    return title[:MAX_TITLE_LEN]


def publish_from_url(access_token: str, video_url: str, title: str) -> str:
    """Ask TikTok to pull video_url into the creator's inbox. Returns publish_id."""
    body = {
        "source_info": {"source": "PULL_FROM_URL", "video_url": video_url},
        "post_info": {"title": title},
    }
    try:
        r = requests.post(
            PUBLISH_INIT_URL,
            json=body,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json; charset=UTF-8",
            },
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise SocialPublishError(f"publish request failed: {e}") from e

    try:
        data = _json(r)
    except TikTokError as e:
        raise SocialPublishError(str(e)) from e
    error = _error_obj(data)
    body = data.get("data")
    publish_id = body.get("publish_id") if isinstance(body, dict) else None
    if not r.ok or error.get("code") not in (None, "ok") or not publish_id:
        raise SocialPublishError(
            f"publish rejected: {error.get('message') or error.get('code') or r.status_code}"
        )
    return publish_id


def publish_to_accounts(account_ids, video_url: str, title: str) -> list[dict]:
    """
    Publish video_url to each account. An empty account_ids means every
    connected TikTok account. Each account gets its own result entry; one
    failure never stops the rest.
    """
    accounts = SocialAccount.objects.filter(provider=SocialAccount.Provider.TIKTOK)
    if account_ids:
        by_id = {a.open_id: a for a in accounts.filter(open_id__in=list(account_ids))}
        targets = [(aid, by_id.get(aid)) for aid in account_ids]
    else:
        targets = [(a.open_id, a) for a in accounts]

    results = []
    for account_id, account in targets:
        try:
            if account is None:
                raise SocialPublishError("account not connected")
            token = ensure_fresh_token(account)
            publish_id = publish_from_url(token, video_url, title)
        except SocialPublishError as e:
            logger.warning("[TIKTOK] publish to {} failed: {}", account_id, e)
            results.append({"account_id": account_id, "ok": False, "error": str(e)})
            continue
        except Exception as e:
            logger.exception("[TIKTOK] unexpected error publishing to {}", account_id)
            results.append({"account_id": account_id, "ok": False, "error": str(e) or e.__class__.__name__})
            continue
        logger.info("[TIKTOK] published to {} (publish_id={})", account_id, publish_id)
        results.append({"account_id": account_id, "ok": True, "publish_id": publish_id})
    return results
