"""
Management command for reducing an HTML file from the CLI.

Writes three files next to each other in the output directory:
<name>.reduced.html, <name>.outline.txt and <name>.outline-top.txt.

Usage:
    python manage.py reduce_html page.html
    python manage.py reduce_html page.html --selector "main article" --output-dir out/
"""

from pathlib import Path

from django.core.management.base import BaseCommand, CommandError

from apps.core.exceptions import ScrapeQueueException
from apps.reducer.engine import ReduceConfig, reduce


class Command(BaseCommand):
    help = 'Reduce an HTML file and write its outlines'

    def add_arguments(self, parser):
        parser.add_argument('input', type=str, help='Path to the HTML file')
        parser.add_argument(
            '--selector',
            type=str,
            default='',
            help='CSS selector; only the first match is kept'
        )
        parser.add_argument(
            '--output-dir',
            type=str,
            default='',
            help='Directory for the output files (default: next to the input)'
        )
        parser.add_argument(
            '--outline-depth',
            type=int,
            default=None,
            help='Depth of the top-level outline (default: REDUCER_OUTLINE_DEPTH)'
        )

    def handle(self, *args, **options):
        source = Path(options['input'])
        if not source.is_file():
            raise CommandError(f"Input file not found: {source}")

        output_dir = Path(options['output_dir']) if options['output_dir'] else source.parent
        output_dir.mkdir(parents=True, exist_ok=True)

        html = source.read_text(encoding='utf-8')
        self.stdout.write(f"Input file has {len(html)} chars")

        overrides = {}
        if options['outline_depth'] is not None:
            overrides['outline_depth'] = options['outline_depth']

        try:
            result = reduce(html, selector=options['selector'] or None,
                            config=ReduceConfig.from_settings(**overrides))
        except ScrapeQueueException as e:
            raise CommandError(str(e))

        stem = source.stem
        targets = (
            (output_dir / f'{stem}.reduced.html', result.html),
            (output_dir / f'{stem}.outline.txt', result.outline),
            (output_dir / f'{stem}.outline-top.txt', result.outline_top_level),
        )
        for path, content in targets:
            path.write_text(content, encoding='utf-8')
            self.stdout.write(f"Wrote {path} ({len(content)} chars)")

        if html:
            reduction = (1 - len(result.html) / len(html)) * 100
            top_reduction = (1 - len(result.outline_top_level) / len(html)) * 100
            self.stdout.write(self.style.SUCCESS(f"Percent reduction: {reduction:.2f}%"))
            self.stdout.write(f"Top-level outline percent reduction: {top_reduction:.2f}%")
