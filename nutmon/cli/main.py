import click
from pydantic import ValidationError

from nutmon.config import Settings
from nutmon.utils.logging import setup_logging

from .ups import list_devices, status, watch


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enables verbose mode.')
@click.option('--quiet', '-q', is_flag=True, help='Enables quiet mode.')
@click.option('--host', default=None, help='NUT server host (overrides NUTMON_NUT_HOST).')
@click.option('--port', default=None, type=int, help='NUT server port (overrides NUTMON_NUT_PORT).')
@click.pass_context
def app(ctx, verbose, quiet, host, port):
    """
    nutmon: Network UPS Tools status monitor.
    """
    ctx.ensure_object(dict)
    ctx.obj['VERBOSE'] = verbose
    ctx.obj['QUIET'] = quiet

    if verbose:
        setup_logging(force=True, level="DEBUG")
    elif quiet:
        setup_logging(force=True, level="ERROR")
    else:
        setup_logging()

    overrides = {}
    if host is not None:
        overrides['NUT_HOST'] = host
    if port is not None:
        overrides['NUT_PORT'] = port
    try:
        ctx.obj['SETTINGS'] = Settings(**overrides)
    except ValidationError as e:
        raise click.BadParameter(str(e)) from e


app.add_command(list_devices, name='list')
app.add_command(status, name='status')
app.add_command(watch, name='watch')

if __name__ == '__main__':
    app()
