#!/usr/bin/env python3
"""
Pre-commit hook that blocks Impact credentials from being committed.

Scans staged files (or the paths given on the command line) for account
SIDs, auth tokens and embedded Basic authorization headers. Placeholder
values such as YOUR_SID_HERE are allowed.

Install: Copy to .git/hooks/pre-commit and make executable (chmod +x)
"""

import re
import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

_PLACEHOLDER = r'(?!YOUR_SID_HERE|YOUR_TOKEN_HERE|YOUR_IMPACT_SID_HERE|YOUR_IMPACT_TOKEN_HERE|changeme|<|\{\{|\$\{)'

# Patterns that indicate potential secrets
SECRET_PATTERNS = [
    (re.compile(r'IMPACT_ACCOUNT_SID\s*[=:]\s*["\']?' + _PLACEHOLDER + r'[A-Za-z0-9]{20,}'),
     'Impact account SID value detected'),
    (re.compile(r'IMPACT_AUTH_TOKEN\s*[=:]\s*["\']?' + _PLACEHOLDER + r'[A-Za-z0-9~._-]{20,}'),
     'Impact auth token value detected'),
    (re.compile(r'\bIR[A-Za-z0-9]{28,}\b'),
     'Impact account SID pattern detected'),
    (re.compile(r'(?i)authorization["\']?\s*[:=]\s*["\']?basic\s+[A-Za-z0-9+/]{16,}={0,2}'),
     'Embedded Basic authorization header detected'),
    (re.compile(r'(?i)(password|passwd|pwd)\s*=\s*["\'][^"\']{8,}["\']'),
     'Hardcoded password detected'),
]

# Files to always check
ALWAYS_CHECK = ['.env.example', 'README.md']

# Files that intentionally contain example values
SKIP_FILES = ['SECURITY.md']

SKIP_PATTERNS = [
    r'\.git/',
    r'\.venv/',
    r'__pycache__/',
    r'\.pyc$',
    r'\.log$',
    r'\.db$',
    r'\.sqlite',
    r'node_modules/',
]


def get_staged_files() -> List[str]:
    """Get list of staged files"""
    try:
        result = subprocess.run(
            ['git', 'diff', '--cached', '--name-only', '--diff-filter=ACM'],
            capture_output=True,
            text=True,
            check=True
        )
    except (OSError, subprocess.CalledProcessError) as e:
        print(f"Warning: Could not list staged files: {e}", file=sys.stderr)
        return []
    return result.stdout.strip().split('\n') if result.stdout.strip() else []


def should_skip_file(filepath: str) -> bool:
    if Path(filepath).name in SKIP_FILES or filepath in SKIP_FILES:
        return True
    return any(re.search(pattern, filepath) for pattern in SKIP_PATTERNS)


def scan_text(content: str, filepath: str = "<text>") -> List[Dict[str, object]]:
    """Return one violation per secret-looking match, with its line number."""
    violations = []
    for pattern, message in SECRET_PATTERNS:
        for match in pattern.finditer(content):
            violations.append({
                'file': filepath,
                'line': content[:match.start()].count('\n') + 1,
                'message': message,
                'match': match.group(0)[:12] + '***'
            })
    return violations


def scan_file(filepath: str) -> List[Dict[str, object]]:
    try:
        content = Path(filepath).read_text(encoding='utf-8', errors='ignore')
    except OSError as e:
        print(f"Warning: Could not scan {filepath}: {e}", file=sys.stderr)
        return []
    return scan_text(content, filepath)


def main(paths: Optional[Sequence[str]] = None) -> int:
    """Main pre-commit hook logic"""
    files = list(paths) if paths else get_staged_files()
    files += [f for f in ALWAYS_CHECK if Path(f).exists() and f not in files]

    print(f"Scanning {len(files)} files for Impact credentials...")

    all_violations = []
    for filepath in files:
        if not Path(filepath).is_file() or should_skip_file(filepath):
            continue
        all_violations.extend(scan_file(filepath))

    if all_violations:
        print("\n" + "=" * 70)
        print("SECRET LEAK DETECTED - COMMIT BLOCKED")
        print("=" * 70)
        for v in all_violations:
            print(f"  {v['file']}:{v['line']}  {v['message']}  ({v['match']})")
        print("\nTo fix:")
        print("  1. Replace real values with placeholders (YOUR_SID_HERE, YOUR_TOKEN_HERE)")
        print("  2. Keep credentials in .env (gitignored) or the environment")
        print()
        return 1

    print("No credentials detected - commit allowed")
    return 0


if __name__ == '__main__':
    sys.exit(main(sys.argv[1:]))
