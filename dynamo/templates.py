"""
Field Templates - Plausible field values for normal traffic
"""
import random
from typing import Any, Dict, List, Optional

import numpy as np
from faker import Faker


STORE_HOST = "https://storedog.example.com"


class HttpFieldTemplates:
    """Normal storedog e-commerce access log fields"""

    ENDPOINTS = [
        "/", "/products", "/cart", "/checkout", "/account", "/login",
        "/logout", "/search", "/api/v1/cart/items", "/api/v1/products",
        "/api/v1/recommendations", "/static/app.js", "/static/styles.css",
    ]

    METHODS = ["GET", "POST", "PUT", "DELETE"]
    METHOD_WEIGHTS = [80, 14, 4, 2]

    STATUS_CODES = [200, 201, 301, 304, 404]
    STATUS_WEIGHTS = [78, 6, 4, 8, 4]

    # share of normal requests that are GET 500 errors
    ERROR_SHARE = 0.09

    def __init__(self, seed: Optional[int] = None):
        self.fake = Faker()
        if seed is not None:
            self.fake.seed_instance(seed)
        self.rng = random.Random(seed)
        self.np_rng = np.random.default_rng(seed)

    def _path(self) -> str:
        if self.rng.random() < 0.35:
            return f"/products/{self.fake.slug()}"
        return self.rng.choice(self.ENDPOINTS)

    def _size(self, status: int) -> int:
        if status in (301, 304):
            return 0
        # response sizes cluster around a few KB with a long tail
        size = self.np_rng.normal(4096, 1500)
        return int(max(128, min(65536, size)))

    def _referer(self) -> str:
        if self.rng.random() < 0.4:
            return "-"
        return f"{STORE_HOST}{self.rng.choice(self.ENDPOINTS)}"

    def normal(self) -> Dict[str, Any]:
        """Fields of one ordinary storefront request"""
        if self.rng.random() < self.ERROR_SHARE:
            method, status = "GET", 500
        else:
            method = self.rng.choices(self.METHODS, weights=self.METHOD_WEIGHTS, k=1)[0]
            status = self.rng.choices(self.STATUS_CODES, weights=self.STATUS_WEIGHTS, k=1)[0]

        return {
            "remote_host": self.fake.ipv4_public(),
            "ident": "-",
            "user": self.fake.user_name() if self.rng.random() < 0.3 else "-",
            "method": method,
            "path": self._path(),
            "protocol": "HTTP/1.1",
            "status": status,
            "size": self._size(status),
            "referer": self._referer(),
            "user_agent": self.fake.user_agent(),
        }


class VpcFieldTemplates:
    """Normal VPC flow log fields for a small web tier"""

    ACCOUNT_ID = "123456789012"

    DESTINATION_PORTS = [443, 80, 8080]
    PORT_WEIGHTS = [85, 10, 5]

    def __init__(self, seed: Optional[int] = None, servers: int = 4):
        self.fake = Faker()
        if seed is not None:
            self.fake.seed_instance(seed)
        self.rng = random.Random(seed)
        self.np_rng = np.random.default_rng(seed)
        self.interface_id = "eni-" + self.fake.hexify(text="^" * 17)
        self.servers: List[str] = [f"10.0.1.{10 + i}" for i in range(servers)]

    def ephemeral_port(self) -> int:
        return self.rng.randint(32768, 60999)

    def normal(self) -> Dict[str, Any]:
        """Fields of one accepted client flow"""
        packets = int(max(5, min(1000, self.np_rng.normal(120, 80))))
        return {
            "version": 2,
            "account_id": self.ACCOUNT_ID,
            "interface_id": self.interface_id,
            "srcaddr": self.fake.ipv4_public(),
            "dstaddr": self.rng.choice(self.servers),
            "srcport": self.ephemeral_port(),
            "dstport": self.rng.choices(self.DESTINATION_PORTS, weights=self.PORT_WEIGHTS, k=1)[0],
            "protocol": 6,
            "packets": packets,
            "bytes": packets * self.rng.randint(46, 1500),
            "duration": self.rng.randint(5, 30),
            "action": "ACCEPT",
            "log_status": "OK",
        }
