"""Request signing for the mtop H5 gateway.

The gateway expects ``sign = md5(token & t & appKey & data)`` where ``token``
is the part of the ``_m_h5_tk`` cookie before the first underscore and ``t``
is the millisecond timestamp also sent as a query field.
"""
import hashlib
import logging
import time
import warnings
from dataclasses import dataclass
from typing import Optional

import orjson

from goofish_monitor.auth.credentials import TOKEN_COOKIE, TOKEN_DELIMITER, CredentialSet
from goofish_monitor.config import config
from goofish_monitor.errors import SignatureInputWarning

logger = logging.getLogger(__name__)

SEARCH_API = "mtop.taobao.idlemtopsearch.pc.search"

# Fixed query fields sent with every signed call
BASE_PARAMS = {
    "jsv": "2.7.2",
    "v": "1.0",
    "type": "originaljson",
    "accountSite": "xianyu",
    "dataType": "json",
    "timeout": "20000",
    "sessionOption": "AutoLoginOnly",
    "spm_cnt": "a21ybx.search.0.0",
    "spm_pre": "a21ybx.search.searchInput.0",
}


def sign(token: str, timestamp_ms: int | str, app_key: str, payload: str) -> str:
    """Hex digest over ``token&timestamp&appKey&payload``. Pure."""
    message = f"{token}&{timestamp_ms}&{app_key}&{payload}"
    return hashlib.md5(message.encode("utf-8")).hexdigest()


def extract_token(raw: Optional[str]) -> str:
    """Take the token prefix of a credential value.

    A value without the delimiter is used whole; that is logged and
    reported as a SignatureInputWarning but never raises.
    """
    if not raw:
        message = f"No {TOKEN_COOKIE} value available, signing with an empty token"
        logger.warning(message)
        warnings.warn(message, SignatureInputWarning, stacklevel=2)
        return ""
    if TOKEN_DELIMITER not in raw:
        message = f"{TOKEN_COOKIE} has no '{TOKEN_DELIMITER}' delimiter, using the whole value as token"
        logger.warning(message)
        warnings.warn(message, SignatureInputWarning, stacklevel=2)
        return raw
    return raw.split(TOKEN_DELIMITER, 1)[0]


@dataclass(frozen=True)
class SignedRequest:
    """Fields of one signed call. Derived, never persisted."""

    token: str
    timestamp_ms: int
    app_key: str
    payload: str
    signature: str
    api: str = SEARCH_API

    def to_params(self) -> dict[str, str]:
        """Query fields in the order the web client sends them."""
        return {
            "jsv": BASE_PARAMS["jsv"],
            "appKey": self.app_key,
            "t": str(self.timestamp_ms),
            "sign": self.signature,
            "v": BASE_PARAMS["v"],
            "type": BASE_PARAMS["type"],
            "accountSite": BASE_PARAMS["accountSite"],
            "dataType": BASE_PARAMS["dataType"],
            "timeout": BASE_PARAMS["timeout"],
            "api": self.api,
            "sessionOption": BASE_PARAMS["sessionOption"],
            "spm_cnt": BASE_PARAMS["spm_cnt"],
            "spm_pre": BASE_PARAMS["spm_pre"],
            "data": self.payload,
        }


def build_signed_request(
    credentials: CredentialSet,
    payload: str,
    app_key: Optional[str] = None,
    timestamp_ms: Optional[int] = None,
    api: str = SEARCH_API,
) -> SignedRequest:
    """Sign `payload` with the token carried by `credentials`."""
    app_key = app_key or config.APP_KEY
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    token = extract_token(credentials.get(TOKEN_COOKIE))
    signature = sign(token, timestamp_ms, app_key, payload)
    logger.debug(f"Signed {api} request at t={timestamp_ms}")
    return SignedRequest(
        token=token,
        timestamp_ms=timestamp_ms,
        app_key=app_key,
        payload=payload,
        signature=signature,
        api=api,
    )


def build_search_payload(query: str, page: int, rows: int) -> str:
    """Compact JSON `data` field for one page of search results."""
    data = {
        "pageNumber": page,
        "keyword": query,
        "fromFilter": False,
        "rowsPerPage": min(rows, config.MAX_ROWS_PER_PAGE),
        "sortValue": "new",
        "sortField": "",
        "customDistance": "",
        "gps": "",
        "propValueStr": {},
        "customGps": "",
        "searchReqFromPage": "pcSearch",
        "extraFilterValue": "{}",
        "userPositionJson": "{}",
    }
    return orjson.dumps(data).decode()
