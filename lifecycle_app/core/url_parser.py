import logging
from typing import List

logger = logging.getLogger(__name__)


class URLParser:
    def parse_url_list(self, raw_value: str, name: str) -> List[str]:
        items = [v.strip().rstrip("/") for v in (raw_value or "").split(",")]

        valid_items = []
        for item in items:
            if not item.startswith(("http://", "https://")):
                continue
            if item not in valid_items:
                valid_items.append(item)

        if not valid_items:
            logger.warning("No valid URLs found in %s", name)

        return valid_items


parser = URLParser()
