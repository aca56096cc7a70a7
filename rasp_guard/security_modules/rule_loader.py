"""
Default weighted rule sets
"""

from typing import Dict, List

from ..models import ThreatType
from .rule import PatternRule


SHELL_COMMANDS = (
    r"ls|whoami|uname|pwd|wget|curl|nc|ncat|netcat|bash|sh|zsh|python[23]?|perl|php|"
    r"nslookup|rm|chmod|chown|ipconfig|ifconfig|powershell|cmd"
)

# Commands that are also plain English words need an argument shape after them
SHELL_WORDS = r"cat|ping|echo|type|net|sleep|dig|ruby|id|dir"
SHELL_ARGUMENT = (
    r"\s+(?:-{1,2}[A-Za-z]|[/~$<>]|[A-Za-z]:\\|\\\\|\d{1,3}(?:\.\d{1,3}){3}\b|\d+\s*(?:[;&|`)]|$))"
)

EVENT_HANDLERS = (
    r"abort|afterprint|animationend|animationstart|beforeprint|beforeunload|blur|canplay|change|click|"
    r"contextmenu|copy|cut|dblclick|drag|dragend|dragenter|dragleave|dragover|dragstart|drop|error|focus|"
    r"focusin|focusout|hashchange|input|invalid|keydown|keypress|keyup|load|loadeddata|loadstart|message|"
    r"mousedown|mouseenter|mouseleave|mousemove|mouseout|mouseover|mouseup|mousewheel|offline|online|"
    r"pagehide|pageshow|paste|pause|play|playing|pointerdown|pointerenter|pointerover|pointerup|popstate|"
    r"progress|reset|resize|scroll|search|select|show|start|submit|toggle|touchend|touchmove|touchstart|"
    r"transitionend|unload|wheel"
)


class RuleLoader:
    """Load the default weighted rules, grouped by threat class"""

    def load_sql_rules(self) -> List[PatternRule]:
        t = ThreatType.SQL_INJECTION
        return [
            PatternRule(1001, r"['\"]\s*\b(?:or|and)\b\s+['\"]?\w+['\"]?\s*=", "SQL Injection - quoted tautology", 60, t),
            PatternRule(1002, r"\b(?:or|and)\b\s+(\d+)\s*=\s*\1\b", "SQL Injection - numeric tautology", 45, t),
            PatternRule(1003, r"\bunion\b(?:\s+(?:all|distinct))?\s+select\b", "SQL Injection - UNION SELECT", 70, t),
            PatternRule(1004, r";\s*(?:drop|truncate|alter|create)\s+(?:table|database|user|index|view)\b", "SQL Injection - stacked DDL", 70, t),
            PatternRule(1005, r";\s*(?:delete\s+from|insert\s+into|update\s+\w+\s+set|select\s+\S+\s+from|exec(?:ute)?\s+\w+|shutdown\b|declare\s+@)", "SQL Injection - stacked query", 70, t),
            PatternRule(1006, r"['\"]\s*(?:(?:--|#)\s*$|/\*|;\s*(?:--|#|/\*|(?:exec(?:ute)?|declare|shutdown|waitfor)\b|xp_\w))", "SQL Injection - quote followed by terminator", 50, t),
            PatternRule(1007, r"--\s*$", "SQL Injection - trailing comment", 25, t),
            PatternRule(1008, r"\b(?:order|group)\s+by\s+\d+", "SQL Injection - column enumeration", 40, t),
            PatternRule(1009, r"['\"]\s*\)?\s*\b(?:or|and|union|order|group|having|select|where)\b", "SQL Injection - quote breakout", 25, t),
            PatternRule(1010, r"\b(?:sleep|benchmark|pg_sleep)\s*\(|\bwaitfor\s+delay\b", "SQL Injection - time based", 60, t),
            PatternRule(1011, r"\b(?:char|concat|group_concat|load_file|extractvalue|updatexml)\s*\(", "SQL Injection - SQL function", 25, t),
            PatternRule(1012, r"\bselect\s+(?:\*|null\b|@@|\d+\s*,|\w+\s*\()", "SQL Injection - SELECT shape", 30, t),
            PatternRule(1013, r"\binsert\s+into\s+\w+\s*(?:\(|values\b)|\bdrop\s+(?:table|database)\s+\w+|\bdelete\s+from\s+\w+\s+where\b|\bupdate\s+\w+\s+set\s+\w+\s*=", "SQL Injection - data manipulation", 40, t),
            PatternRule(1014, r"\b(?:xp_cmdshell|sp_executesql|sp_oacreate|sp_makewebtask)\b", "SQL Injection - stored procedure", 50, t),
            PatternRule(1015, r"\binformation_schema\b|\bsysobjects\b|\bpg_catalog\b", "SQL Injection - schema probing", 40, t),
        ]

    def load_nosql_rules(self) -> List[PatternRule]:
        t = ThreatType.NOSQL_INJECTION
        return [
            PatternRule(2001, r"\$(?:where|ne|gt|gte|lt|lte|regex|exists|in|nin|or|and|not|nor|expr|elemMatch|eq)\b", "NoSQL Injection - query operator", 40, t),
            PatternRule(2002, r"[\"']\$\w+[\"']\s*:", "NoSQL Injection - operator object", 30, t),
            PatternRule(2003, r"\$where\b.*(?:function|this\.|sleep\s*\()", "NoSQL Injection - server side JavaScript", 30, t),
            PatternRule(2004, r"\[\$(?:ne|gt|lt|regex|exists|in|nin)\]", "NoSQL Injection - bracket operator", 40, t),
        ]

    def load_command_rules(self) -> List[PatternRule]:
        t = ThreatType.COMMAND_INJECTION
        return [
            PatternRule(3001, rf"(?:[;&|`]|\$\()\s*(?:{SHELL_COMMANDS})(?=[\s;|&<>'\"`)]|$)", "Command Injection - chained command", 70, t),
            PatternRule(3002, r"\$\([^)]*\)", "Command Injection - command substitution", 60, t),
            PatternRule(3003, r"`[^`]+`", "Command Injection - backtick substitution", 25, t),
            PatternRule(3004, r"\$\{IFS\}|\$IFS\b", "Command Injection - IFS evasion", 60, t),
            PatternRule(3005, r"[\r\n]\s*(?:whoami|uname|wget|curl|nc|bash|sh|python[23]?|perl|ping|nslookup|rm|chmod|cat|ls|id)\s+(?:-\w|/|\$)", "Command Injection - newline command", 60, t, flags=0),
            PatternRule(3006, r"/dev/tcp/|\bnc\s+-[el]|\bbash\s+-i\b|\bmkfifo\b", "Command Injection - reverse shell", 60, t),
            PatternRule(3007, r"/bin/(?:ba|z|k)?sh\b|\bcmd(?:\.exe)?\s+/c\b", "Command Injection - shell binary", 50, t),
            PatternRule(3008, r"\brO0AB|\bO:\d+:\"|__reduce__|!!python/object", "Command Injection - serialized object", 50, t),
            PatternRule(3009, rf"(?:[;&|`]|\$\()\s*(?:{SHELL_WORDS})(?:{SHELL_ARGUMENT}|\s*[`)])", "Command Injection - chained command with arguments", 70, t),
        ]

    def load_path_traversal_rules(self) -> List[PatternRule]:
        t = ThreatType.PATH_TRAVERSAL
        return [
            PatternRule(4001, r"\.\.[/\\]", "Path Traversal - parent directory", 50, t),
            PatternRule(4002, r"/etc/(?:passwd|shadow|hosts|group|issue)\b|\bboot\.ini\b|\bwin\.ini\b|system32|\.htaccess\b|[/\\]\.env\b|/proc/self/", "Path Traversal - sensitive file", 40, t),
            PatternRule(4003, r"\x00", "Path Traversal - null byte", 40, t),
        ]

    def load_xxe_rules(self) -> List[PatternRule]:
        t = ThreatType.XXE
        return [
            PatternRule(5001, r"<!ENTITY\b", "XXE - entity declaration", 60, t),
            PatternRule(5002, r"<!DOCTYPE[^>]*\[", "XXE - inline DTD", 40, t),
            PatternRule(5003, r"\bSYSTEM\s+[\"']", "XXE - external SYSTEM identifier", 40, t, flags=0),
            PatternRule(5004, r"\bPUBLIC\s+[\"']", "XXE - external PUBLIC identifier", 30, t, flags=0),
        ]

    def load_xss_rules(self) -> List[PatternRule]:
        t = ThreatType.XSS
        return [
            PatternRule(6001, r"<\s*script\b", "XSS - script tag", 70, t),
            PatternRule(6002, r"<\s*/?\s*(?:iframe|object|embed|applet|meta|link|base|form|svg|math|frameset|frame|style|img|video|audio|body|input|details|marquee)\b[^>]*?(?:\s|/)(?:src|href|data|action|formaction|on\w+)\s*=|<\s*(?:iframe|object|embed|applet|svg|math|frameset)\b", "XSS - dangerous tag", 40, t),
            PatternRule(6003, rf"[\s\"'/;](?:on(?:{EVENT_HANDLERS}))\s*=", "XSS - event handler", 50, t),
            PatternRule(6004, r"\b(?:java|vb)script\s*:", "XSS - script protocol", 60, t),
            PatternRule(6005, r"\bdata\s*:\s*text/html", "XSS - data URI", 50, t),
            PatternRule(6006, r"\b(?:alert|prompt|confirm|eval)\s*\(\s*(?:\d+\s*\)|['\"`/)]|(?:document|window|top|self|this|string|atob|location)\b)", "XSS - script execution call", 30, t),
            PatternRule(6007, r"\bdocument\.(?:cookie|write|domain)\b|\bwindow\.location\b|\b(?:inner|outer)HTML\b|\.fromCharCode\b", "XSS - DOM sink", 40, t),
            PatternRule(6008, r"\bexpression\s*\(|-moz-binding", "XSS - CSS expression", 40, t),
            PatternRule(6009, r"<\s*(?:noscript|xmp|noembed|noframes|template)\b", "XSS - mutation prone tag", 30, t),
            PatternRule(6010, r"\bv-html\b|\bdangerouslySetInnerHTML\b|\bng-bind-html\b|\{\{\s*constructor\b", "XSS - framework sink", 30, t),
        ]

    def load_default_rules(self) -> Dict[ThreatType, List[PatternRule]]:
        """Load and compile every default rule set"""
        rule_sets = {
            ThreatType.SQL_INJECTION: self.load_sql_rules(),
            ThreatType.NOSQL_INJECTION: self.load_nosql_rules(),
            ThreatType.COMMAND_INJECTION: self.load_command_rules(),
            ThreatType.PATH_TRAVERSAL: self.load_path_traversal_rules(),
            ThreatType.XXE: self.load_xxe_rules(),
            ThreatType.XSS: self.load_xss_rules(),
        }

        # Compile all rules
        for rules in rule_sets.values():
            for rule in rules:
                rule.compile()

        return rule_sets
