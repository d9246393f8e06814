"""URL builders for the Goofish H5 gateway and site."""
from goofish_monitor.config import config


def get_search_url() -> str:
    """Search endpoint of the H5 gateway."""
    return f"{config.API_BASE_URL}{config.SEARCH_ENDPOINT}"


def get_item_url(item_id: str) -> str:
    """Public page of a listing."""
    return f"{config.SITE_URL}/item?id={item_id}"
