#!/usr/bin/env python3
"""
Harrier - Crawl and Discovery for Web Application Scanning

Main entry point for the command line interface.
"""

import asyncio
import json
import click
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


@click.group()
@click.version_option(version='1.0.0', prog_name='Harrier')
def cli():
    """Harrier - crawl, audit and train on a web application"""
    pass


@cli.command()
@click.argument('url')
@click.option('--env', 'env_name', default=None, help='Config profile (development, testing, production)')
@click.option('--depth', type=int, default=None, help='Maximum crawl depth')
@click.option('--pages', type=int, default=None, help='Maximum pages to crawl')
@click.option('--link-limit', type=int, default=None, help='Scan-wide link count limit')
@click.option('--precision', type=int, default=None, help='Fetches per page for nonce detection')
@click.option('--scope', type=click.Choice(['domain', 'subdomain', 'path']), default=None, help='Scope restriction')
@click.option('--exclude', multiple=True, help='Path fragments to exclude')
@click.option('--fingerprint/--no-fingerprint', default=None, help='Platform fingerprinting')
@click.option('--audit/--no-audit', default=True, help='Audit elements and train on responses')
@click.option('--output', '-o', help='Output file for JSON results')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
def scan(url, env_name, depth, pages, link_limit, precision, scope, exclude, fingerprint, audit, output, verbose):
    """Crawl and audit a target URL, training on every audit response."""
    from harrier import configure_logging
    from harrier.config import get_config
    from harrier.scanner.core.engine import ScannerEngine, ScanConfig

    cfg = get_config(env_name)
    configure_logging('DEBUG' if verbose else cfg.LOG_LEVEL)

    config = ScanConfig.from_object(
        cfg,
        max_depth=depth,
        max_pages=pages,
        link_count_limit=link_limit,
        precision=precision,
        scope=scope,
        fingerprint=fingerprint,
        excluded_paths=list(exclude) or None,
        audit=audit
    )

    click.echo(f"""
    Harrier Scanner
    Target:    {url}
    Max Depth: {config.max_depth}
    Max Pages: {config.max_pages}
    Precision: {config.precision}
    """)

    def on_progress(data):
        if verbose:
            click.echo(f"  [{data['progress']}%] {data.get('message', '')}")

    def on_page(page):
        click.secho(
            f"  [+] New surface at {page.url}: "
            f"{len(page.links)} links, {len(page.forms)} forms, {len(page.cookies)} cookies",
            fg='green'
        )

    scanner = ScannerEngine(config=config, progress_callback=on_progress, page_callback=on_page)

    click.echo("Starting scan...")
    click.echo("-" * 50)

    results = asyncio.run(scanner.scan(url))

    click.echo("-" * 50)
    click.echo(f"Status: {results['status']}")
    if results['error']:
        click.secho(f"Error: {results['error']}", fg='red')

    stats = results['statistics']
    click.echo(f"  Pages crawled: {stats['pages_crawled']}")
    click.echo(f"  Pages audited: {stats['pages_audited']}")
    click.echo(f"  Pages trained: {stats['pages_trained']}")

    if output:
        with open(output, 'w') as f:
            json.dump(results, f, indent=2)
        click.echo(f"Results saved to: {output}")


@cli.command()
@click.argument('url')
@click.option('--precision', type=int, default=1, help='Fetches for nonce detection')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
def fetch(url, precision, verbose):
    """Fetch a single page and print its auditable elements."""
    from harrier import configure_logging
    from harrier.scanner.core.page import Page
    from harrier.scanner.core.platforms import PlatformManager
    from harrier.scanner.core.requester import AsyncRequester

    configure_logging('DEBUG' if verbose else 'WARNING')

    async def run_fetch():
        platforms = PlatformManager()
        async with AsyncRequester(delay=0) as requester:
            return await Page.fetch(url, requester, precision=precision, fingerprinter=platforms)

    page = asyncio.run(run_fetch())

    click.echo(f"{page.code} {page.url}")
    click.echo(f"Title: {page.title()}")
    click.echo(f"Platforms: {', '.join(sorted(page.platforms())) or '-'}")

    for link in page.links:
        click.echo(f"  link    {link.action} {list(link.parameters)}")
    for form in page.forms:
        nonces = f" nonces={list(form.nonce_names)}" if form.nonce_names else ''
        click.echo(f"  form    {form.method} {form.action} {[f.name for f in form.fields]}{nonces}")
    for cookie in page.cookies:
        click.echo(f"  cookie  {cookie.name}")
    click.echo(f"  paths   {len(page.paths)}")


if __name__ == '__main__':
    cli()
