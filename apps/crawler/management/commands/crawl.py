"""
Management command for driving crawl runs from the CLI.

Runs inline in this process, so no Celery worker is needed.

Usage:
    python manage.py crawl start https://example.com --max-depth 2 --max-pages 50
    python manage.py crawl start https://example.com --include "example.com/blog/**" --exclude "**.pdf"
    python manage.py crawl pause 12
    python manage.py crawl resume 12
    python manage.py crawl status 12
    python manage.py crawl results 12 --include-html --output-json run12.json
    python manage.py crawl scrape https://example.com --engine scrape-js --output-json page.json
"""

import json

from django.conf import settings as django_settings
from django.core.management.base import BaseCommand, CommandError

from apps.core.exceptions import ScrapeQueueException
from apps.crawler import services
from apps.crawler.exceptions import CrawlFailed


class Command(BaseCommand):
    help = 'Start, pause, resume and inspect crawl runs, or scrape a single page'

    def add_arguments(self, parser):
        subparsers = parser.add_subparsers(dest='action', required=True)

        start = subparsers.add_parser('start', help='Create a run and crawl it')
        start.add_argument('url', type=str, help='Seed URL (http or https)')
        start.add_argument('--max-depth', type=int, default=1, help='Link depth to follow (default: 1)')
        start.add_argument('--max-pages', type=int, default=10, help='Pages to complete (default: 10)')
        start.add_argument(
            '--concurrency',
            type=int,
            default=getattr(django_settings, 'CRAWLER_DEFAULT_CONCURRENCY', 1),
            help='Parallel workers (default: CRAWLER_DEFAULT_CONCURRENCY)'
        )
        start.add_argument('--include', nargs='+', default=[], help='Glob patterns a URL must match')
        start.add_argument('--exclude', nargs='+', default=[], help='Glob patterns to skip')
        start.add_argument('--crawl-external', action='store_true', help='Follow links to other hosts')
        self._add_fetch_arguments(start)
        start.add_argument('--background', action='store_true', help='Dispatch to a Celery worker')

        scrape = subparsers.add_parser('scrape', help='Fetch one page without creating a run')
        scrape.add_argument('url', type=str, help='Page URL (http or https)')
        self._add_fetch_arguments(scrape)
        scrape.add_argument('--output-json', type=str, default='', help='Write the response to a JSON file')

        for name, text in (
            ('pause', 'Pause a running run'),
            ('resume', 'Resume a paused run'),
            ('status', 'Show run status and queue counts'),
        ):
            sub = subparsers.add_parser(name, help=text)
            sub.add_argument('run_id', type=int)

        results = subparsers.add_parser('results', help='Print run results as JSON')
        results.add_argument('run_id', type=int)
        results.add_argument('--include-html', action='store_true', help='Include stored page HTML')
        results.add_argument('--output-json', type=str, default='', help='Write results to JSON file')

    @staticmethod
    def _add_fetch_arguments(parser):
        parser.add_argument(
            '--engine',
            choices=['scrape', 'scrape-js'],
            default='scrape',
            help='Fetch backend (default: scrape)'
        )
        parser.add_argument('--geo', type=str, default='us', help='Proxy geo (default: us)')
        parser.add_argument('--header', dest='headers', action='append', default=[],
                            help='Extra request header, "Name: value" (repeatable)')

    @staticmethod
    def _fetch_settings(options):
        return {
            'engine': options['engine'],
            'geo': options['geo'],
            'headers': options['headers'],
        }

    def handle(self, *args, **options):
        action = options['action']
        try:
            getattr(self, f'handle_{action}')(options)
        except ScrapeQueueException as e:
            raise CommandError(str(e))
        except CrawlFailed as e:
            raise CommandError(f'Crawl failed: {e}')

    def handle_start(self, options):
        settings = self._fetch_settings(options)
        self.stdout.write(self.style.NOTICE(f"Crawling {options['url']}"))
        run_id = services.start_crawl(
            options['url'],
            max_depth=options['max_depth'],
            max_pages=options['max_pages'],
            concurrency=options['concurrency'],
            include_patterns=options['include'],
            exclude_patterns=options['exclude'],
            crawl_external=options['crawl_external'],
            settings=settings,
            background=options['background'],
        )
        self.stdout.write(f"Run ID: {run_id}")
        self._write_status(run_id)

    def handle_pause(self, options):
        services.pause(options['run_id'])
        self.stdout.write(self.style.SUCCESS(f"Pause requested for run {options['run_id']}"))

    def handle_resume(self, options):
        services.resume(options['run_id'])
        self._write_status(options['run_id'])

    def handle_status(self, options):
        self._write_status(options['run_id'])

    def handle_results(self, options):
        result = services.get_results(options['run_id'], include_html=options['include_html'])
        self._write_json(result, options['output_json'])

    def handle_scrape(self, options):
        result = services.scrape_page(options['url'], settings=self._fetch_settings(options))
        self.stdout.write(self.style.SUCCESS(
            f"Status code: {result['statusCode']}, final URL: {result['finalUrl']}"
        ))
        self._write_json(result, options['output_json'])

    def _write_json(self, data, output_json):
        payload = json.dumps(data, indent=2, default=str)
        if output_json:
            with open(output_json, 'w') as f:
                f.write(payload)
            self.stdout.write(f"Results written to: {output_json}")
        else:
            self.stdout.write(payload)

    def _write_status(self, run_id):
        info = services.get_status(run_id)
        stats = info['stats']
        style = self.style.SUCCESS if info['status'] == 'completed' else self.style.WARNING
        self.stdout.write(style(f"Status: {info['status']}"))
        self.stdout.write(
            f"Pages: {stats['total']} total, {stats['completed']} completed, "
            f"{stats['failed']} failed, {stats['canceled']} canceled, "
            f"{stats['pending']} pending, {stats['processing']} processing"
        )
