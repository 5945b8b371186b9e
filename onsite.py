#!/usr/bin/env python3
"""Add or remove URLs in an XML sitemap file."""

from __future__ import annotations

import argparse
import os
import sys
import tempfile
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"
DEFAULT_SITEMAP = "sitemap.xml"
URL_FIELDS = ("loc", "lastmod", "changefreq", "priority")
OPTIONAL_FIELDS = URL_FIELDS[1:]


@dataclass
class SitemapUrl:
    loc: str
    lastmod: str | None = None
    changefreq: str | None = None
    priority: str | None = None


def file_prefix(name: str) -> str:
    """Name up to the first dot, keeping a leading dot (".index.html" -> ".index")."""
    if name.startswith("."):
        return "." + name[1:].split(".", 1)[0]
    return name.split(".", 1)[0]


def file_to_url(file_path: str, root: str, old_root: str | None = None, clean: bool = False) -> str:
    path = PurePosixPath(file_path)
    if old_root:
        try:
            path = path.relative_to(old_root)
        except ValueError:
            pass

    if clean and file_prefix(path.name) == "index":
        path = path.parent

    rest = path.as_posix().lstrip("/")
    if rest == ".":
        rest = ""
    if not rest:
        return root
    if root.endswith("/"):
        return root + rest
    return f"{root}/{rest}"


def escape(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("'", "&apos;")
        .replace('"', "&quot;")
        .replace(">", "&gt;")
        .replace("<", "&lt;")
    )


def localname(tag: str) -> str:
    if "}" in tag:
        return tag.rsplit("}", 1)[-1]
    return tag


def open_field(stack: list[str]) -> str | None:
    if stack and stack[-1] in URL_FIELDS:
        return stack[-1]
    return None


def load_sitemap(path: Path) -> tuple[list[SitemapUrl], str | None]:
    """Read the url entries of a sitemap file.

    Returns the entries in document order and, when the XML is malformed, the
    parse error message. Entries completed before the error are kept. A
    missing file is an empty sitemap; any other I/O failure raises OSError.
    """
    if not path.exists():
        return [], None

    urls: list[SitemapUrl] = []
    stack: list[str] = []
    pending: dict[str, str] = {}
    root: ET.Element | None = None
    try:
        for event, elem in ET.iterparse(str(path), events=("start", "end")):
            if event == "start":
                if root is None:
                    root = elem
                stack.append(localname(elem.tag))
                continue
            field = open_field(stack)
            if field and elem.text is not None:
                pending[field] = elem.text
            elif stack[-1] == "url":
                if "loc" in pending:
                    urls.append(SitemapUrl(**pending))
                pending = {}
                elem.clear()
                # iterparse still links finished entries under the root
                if root is not elem:
                    root.clear()
            stack.pop()
    except ET.ParseError as exc:
        return urls, f"Invalid XML in {path}: {exc}"
    return urls, None


def remove_url(urls: list[SitemapUrl], loc: str) -> bool:
    for idx, url in enumerate(urls):
        if url.loc == loc:
            del urls[idx]
            return True
    return False


def add_url(urls: list[SitemapUrl], url: SitemapUrl) -> bool:
    if any(existing.loc == url.loc for existing in urls):
        return False
    urls.append(url)
    return True


def render_urlset(urls: list[SitemapUrl]) -> str:
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<urlset xmlns="{SITEMAP_NS}">',
    ]
    for url in urls:
        lines.append("    <url>")
        lines.append(f"        <loc>{escape(url.loc)}</loc>")
        for name in OPTIONAL_FIELDS:
            value = getattr(url, name)
            if value is not None:
                lines.append(f"        <{name}>{escape(value)}</{name}>")
        lines.append("    </url>")
    lines.append("</urlset>")
    return "\n".join(lines) + "\n"


def write_sitemap(path: Path, text: str) -> None:
    # follow a symlinked sitemap so the rename replaces the real file
    path = path.resolve()
    mode = path.stat().st_mode & 0o777 if path.exists() else 0o644
    tmp = tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
    )
    try:
        with tmp:
            tmp.write(text)
        # mkstemp creates 0600 files
        os.chmod(tmp.name, mode)
        os.replace(tmp.name, path)
    except BaseException:
        Path(tmp.name).unlink(missing_ok=True)
        raise


def new_url(args: argparse.Namespace) -> SitemapUrl:
    if args.to_url:
        loc = file_to_url(args.add, args.root, args.old_root, args.clean_url)
    else:
        loc = args.add
    url = SitemapUrl(loc=loc)
    for name in OPTIONAL_FIELDS:
        value = getattr(args, name)
        if value:
            setattr(url, name, value)
    return url


def run(args: argparse.Namespace) -> int:
    if args.to_url and args.root is None:
        print("Error: --to-url requires --root", file=sys.stderr)
        return 2
    if args.add == "":
        print("Error: --add requires a non-empty url", file=sys.stderr)
        return 2

    path = Path(args.file)
    urls: list[SitemapUrl] = []
    if not args.clean:
        try:
            urls, parse_error = load_sitemap(path)
        except OSError as exc:
            print(f"Error: failed to open `{path}`: {exc}", file=sys.stderr)
            return 1
        if parse_error:
            print(f"Warning: {parse_error} (kept {len(urls)} URLs read before the error)", file=sys.stderr)

    if args.remove is not None:
        remove_url(urls, args.remove)

    if args.add is not None:
        add_url(urls, new_url(args))

    try:
        write_sitemap(path, render_urlset(urls))
    except (OSError, UnicodeError) as exc:
        print(f"Error: failed to write `{path}`: {exc}", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="onsite", description="Add or remove URLs in an XML sitemap.")
    parser.add_argument("-c", "--clean", action="store_true", help="remove all urls from the sitemap")
    parser.add_argument("-f", "--file", default=DEFAULT_SITEMAP, help="the sitemap file (default: sitemap.xml)")

    parser.add_argument("-a", "--add", metavar="URL", help="add a url to the sitemap (gets escaped)")
    parser.add_argument("--lastmod", metavar="DATE", help="set the url's lastmod property")
    parser.add_argument("--changefreq", metavar="FREQ", help="set the url's changefreq property")
    parser.add_argument("--priority", metavar="PRI", help="set the url's priority property")

    parser.add_argument("-r", "--remove", metavar="URL", help="remove a url from the sitemap")

    parser.add_argument("--to-url", action="store_true", help="transform a filepath into a url (requires --root)")
    parser.add_argument("--root", help="the root (plus protocol) for the url")
    parser.add_argument("--old-root", metavar="OLD", help="a prefix to strip from the filepath")
    parser.add_argument("--clean-url", action="store_true", help="removes `index.*` from the end of the filepath")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return run(args)


if __name__ == "__main__":
    raise SystemExit(main())
