"""Command line interface module."""

import json
from datetime import date
from typing import List, Optional, Tuple

import click

from .config import Config
from .date_parser import parse_date, today_in_japan
from .error_handler import (
    BaseApplicationError, ConfigurationError, DateParseError, handle_error
)
from .japanese_holidays import JapaneseHolidays
from .logging_config import (
    setup_logging, LogLevel, LogFormat, log_performance, cleanup_logging
)


OUTPUT_FORMATS = ['human', 'json', 'quiet']


def _report_error(error: BaseApplicationError):
    """エラーを標準エラー出力に表示して終了コード1で終了"""
    click.echo(f"Error: {error.get_user_message()}", err=True)
    if isinstance(error, DateParseError):
        click.echo("Supported formats:", err=True)
        for description in error.supported_formats:
            click.echo(f"  {description}", err=True)
    else:
        for suggestion in error.recovery_suggestions:
            click.echo(f"  - {suggestion}", err=True)
    raise click.Abort()


def _get_holidays(ctx) -> JapaneseHolidays:
    if 'holidays' not in ctx.obj:
        ctx.obj['holidays'] = JapaneseHolidays(ctx.obj['config'])
    return ctx.obj['holidays']


def _holiday_entry(holiday_date: date, holiday_name: Optional[str]) -> dict:
    return {
        'date': holiday_date.isoformat(),
        'is_holiday': holiday_name is not None,
        'holiday_name': holiday_name
    }


def _print_check_result(check_date: date, holiday_name: Optional[str], output: str,
                        next_holiday: Optional[Tuple[date, str]] = None):
    if output == 'json':
        click.echo(json.dumps(_holiday_entry(check_date, holiday_name), ensure_ascii=False))
    elif output == 'quiet':
        if holiday_name:
            click.echo(holiday_name)
    elif holiday_name:
        click.echo(f"{check_date.isoformat()} is holiday({holiday_name})")
    else:
        click.echo(f"{check_date.isoformat()} is not a holiday")
        if next_holiday:
            next_date, next_name = next_holiday
            days_until = (next_date - check_date).days
            click.echo(f"Next holiday: {next_date.isoformat()} ({next_name}) in {days_until} days")


def _print_holiday_list(start_date: date, end_date: date,
                        holidays: List[Tuple[date, str]], output: str):
    if output == 'json':
        payload = {
            'start_date': start_date.isoformat(),
            'end_date': end_date.isoformat(),
            'holidays': [_holiday_entry(d, name) for d, name in holidays]
        }
        click.echo(json.dumps(payload, ensure_ascii=False, indent=2))
    elif output == 'quiet':
        for holiday_date, holiday_name in holidays:
            click.echo(f"{holiday_date.isoformat()} - {holiday_name}")
    elif holidays:
        click.echo(f"Holidays in range ({start_date.isoformat()} to {end_date.isoformat()}):")
        for holiday_date, holiday_name in holidays:
            click.echo(f"  {holiday_date.isoformat()} - {holiday_name}")
    else:
        click.echo("No holidays found in the specified range "
                   f"({start_date.isoformat()} to {end_date.isoformat()})")


@click.group(invoke_without_command=True)
@click.option('--config', '-c', help='Configuration file path')
@click.option('--debug', is_flag=True, help='Enable debug mode with verbose logging')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']),
              default='WARNING', help='Set logging level')
@click.option('--log-format', type=click.Choice(['simple', 'detailed', 'json', 'structured']),
              default='simple', help='Set log format')
@click.option('--enable-monitoring', is_flag=True, help='Enable performance monitoring')
@click.option('--log-dir', type=click.Path(file_okay=False),
              help='Also write rotating log files (application.log, performance.log) here')
@click.pass_context
def cli(ctx, config: Optional[str], debug: bool, log_level: str, log_format: str,
        enable_monitoring: bool, log_dir: Optional[str]):
    """Japanese national holiday lookup based on the Cabinet Office CSV.

    Without a command, checks whether today (Japan time) is a holiday.

    Examples:
      python main.py check 2022/01/01
      python main.py list --start 2023-01-01 --end 2023-01-31 -o json
      python main.py update
    """
    ctx.ensure_object(dict)

    setup_logging(
        log_level=getattr(LogLevel, log_level),
        log_format=getattr(LogFormat, log_format.upper()),
        log_dir=log_dir,
        enable_performance_monitoring=enable_monitoring,
        debug_mode=debug
    )
    ctx.call_on_close(cleanup_logging)

    try:
        ctx.obj['config'] = Config(config)
    except ConfigurationError as e:
        handle_error(e, {"operation": "cli_initialization"})
        _report_error(e)

    if ctx.invoked_subcommand is None:
        ctx.invoke(check)


@cli.command()
@click.argument('date_arg', metavar='DATE', required=False)
@click.option('--date', '-d', 'date_option', help='Date to check (default: today in Japan)')
@click.option('--format', '-f', 'date_format', help='Explicit strptime format, e.g. %d.%m.%Y')
@click.option('--output', '-o', type=click.Choice(OUTPUT_FORMATS), default='human',
              help='Output format')
@click.pass_context
@log_performance("check_holiday")
def check(ctx, date_arg: Optional[str] = None, date_option: Optional[str] = None,
          date_format: Optional[str] = None, output: str = 'human'):
    """Check if a date is a Japanese holiday."""
    if date_arg is not None and date_option is not None:
        raise click.UsageError("DATE and --date cannot be used together", ctx=ctx)

    try:
        jp_holidays = _get_holidays(ctx)
        value = date_option if date_option is not None else date_arg
        if value is None:
            check_date, holiday_name = jp_holidays.check(today_in_japan())
        else:
            check_date, holiday_name = jp_holidays.check(value, date_format)

        next_holiday = None
        if holiday_name is None and output == 'human':
            next_holiday = jp_holidays.get_next_holiday(check_date)

        _print_check_result(check_date, holiday_name, output, next_holiday)

    except BaseApplicationError as e:
        _report_error(e)


@cli.command('list')
@click.option('--start', '-s', 'start', required=True, help='Start date (inclusive)')
@click.option('--end', '-e', 'end', required=True, help='End date (inclusive)')
@click.option('--format', '-f', 'date_format', help='Explicit strptime format for both dates')
@click.option('--output', '-o', type=click.Choice(OUTPUT_FORMATS), default='human',
              help='Output format')
@click.pass_context
@log_performance("list_holidays")
def list_holidays(ctx, start: str, end: str, date_format: Optional[str], output: str):
    """List holidays between two dates."""
    try:
        start_date = parse_date(start, date_format)
        end_date = parse_date(end, date_format)
        holidays = _get_holidays(ctx).get_holidays_in_range(start_date, end_date)

        _print_holiday_list(start_date, end_date, holidays, output)

    except BaseApplicationError as e:
        _report_error(e)


@cli.command()
@click.pass_context
@log_performance("update_holidays")
def update(ctx):
    """Force refresh holiday data from Cabinet Office."""
    try:
        jp_holidays = JapaneseHolidays(ctx.obj['config'])
        click.echo("Updating holiday data from Cabinet Office...")
        stats = jp_holidays.update()

        click.echo("Holiday data updated successfully")
        click.echo(f"  Total holidays: {stats['total']}")
        click.echo(f"  Years covered: {stats['years']} ({stats['min_year']} - {stats['max_year']})")
        click.echo(f"  Cache file: {jp_holidays.cache.cache_path}")

    except BaseApplicationError as e:
        _report_error(e)


if __name__ == '__main__':
    cli()
