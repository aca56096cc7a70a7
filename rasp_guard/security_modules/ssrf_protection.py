"""
SSRF (Server-Side Request Forgery) analysis helpers
"""

import ipaddress
import re
import urllib.parse
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class SSRFResult:
    """SSRF analysis result for one URL or protocol hit"""
    confidence: int
    message: str
    target: str
    attack_type: str


class SSRFAnalyzer:
    """Classify URLs found in request input"""

    URL_PATTERN = re.compile(r"(?i)\b(?:https?|ftp|file|gopher|dict|ldap|sftp|tftp|jar|netdoc)://[^\s\"'<>]*")

    LOCALHOST_VARIANTS = {"localhost", "0.0.0.0", "0", "127.1", "127.0.1", "0x7f.1", "0x7f.0.0.1", "2130706433", "017700000001"}

    CLOUD_METADATA_HOSTS = {
        "169.254.169.254",
        "100.100.100.200",
        "metadata.google.internal",
        "metadata",
        "instance-data",
    }

    METADATA_PATHS = re.compile(r"(?i)/latest/meta-data|/computeMetadata/v1|/metadata/identity|/metadata/instance")

    DANGEROUS_PROTOCOLS = {
        "file": 80,
        "gopher": 80,
        "dict": 60,
        "ldap": 60,
        "sftp": 50,
        "tftp": 50,
        "jar": 60,
        "netdoc": 60,
    }

    INTERNAL_HOSTNAME = re.compile(r"\.(?:local|internal|corp|lan|intranet)$")

    def extract_urls(self, data: str) -> List[str]:
        """Extract URL-looking tokens from request data"""
        seen = []
        for match in self.URL_PATTERN.findall(data):
            url = match.rstrip(".,;)")
            if url not in seen:
                seen.append(url)
        return seen

    def analyze(self, data: str) -> List[SSRFResult]:
        """Analyze every URL in data and return the risky ones"""
        results = []
        for url in self.extract_urls(data):
            result = self.analyze_url(url)
            if result:
                results.append(result)
        return results

    def analyze_url(self, url: str) -> Optional[SSRFResult]:
        """Analyze a specific URL for SSRF risks"""
        parsed = urllib.parse.urlparse(url)
        scheme = parsed.scheme.lower()

        if scheme in self.DANGEROUS_PROTOCOLS:
            return SSRFResult(self.DANGEROUS_PROTOCOLS[scheme],
                              f"Dangerous protocol in URL: {scheme}://", url, "Protocol-based SSRF")

        try:
            hostname = parsed.hostname
        except ValueError:
            return SSRFResult(40, "Malformed URL host", url, "Malformed URL")
        if not hostname:
            return None

        if self.METADATA_PATHS.search(parsed.path or ""):
            return SSRFResult(90, f"Cloud metadata path requested on {hostname}", url, "Cloud metadata access")

        try:
            ip = ipaddress.ip_address(hostname)
        except ValueError:
            return self._check_hostname(hostname, url)
        return self._check_ip_address(ip, url)

    def _check_ip_address(self, ip, url: str) -> Optional[SSRFResult]:
        """Check IP address for SSRF risks"""
        if str(ip) in self.CLOUD_METADATA_HOSTS:
            return SSRFResult(95, f"SSRF attempt targeting cloud metadata: {ip}", url, "Cloud metadata access")
        if ip.is_loopback or ip.is_unspecified:
            return SSRFResult(90, f"SSRF attempt targeting localhost: {ip}", url, "Localhost targeting")
        if ip.is_link_local:
            return SSRFResult(80, f"SSRF attempt targeting link-local address: {ip}", url, "Link-local access")
        if ip.is_private or ip.is_reserved:
            return SSRFResult(70, f"SSRF attempt targeting private network: {ip}", url, "Private network access")
        return None

    def _check_hostname(self, hostname: str, url: str) -> Optional[SSRFResult]:
        """Check hostname for SSRF risks"""
        hostname_lower = hostname.lower().rstrip(".")

        # Check for localhost variants
        if hostname_lower in self.LOCALHOST_VARIANTS or hostname_lower.endswith(".localhost"):
            return SSRFResult(90, f"SSRF attempt using localhost variant: {hostname}", url, "Localhost bypass")

        # Check for cloud metadata hostnames
        if hostname_lower in self.CLOUD_METADATA_HOSTS:
            return SSRFResult(95, f"SSRF attempt targeting cloud metadata: {hostname}", url, "Cloud metadata access")

        if self.INTERNAL_HOSTNAME.search(hostname_lower):
            return SSRFResult(40, f"SSRF attempt targeting internal hostname: {hostname}", url, "Internal hostname")

        return None
