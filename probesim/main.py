import logging
from pathlib import Path
import sys
import typing as t

import click


@click.group()
def cli():
    pass


def _setup_logging(verbose: int):
    level = logging.WARNING if verbose == 0 else logging.INFO if verbose == 1 else logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


@cli.command('run')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('-o', '--out', type=click.Path(file_okay=False), default='.')
@click.option('--log/--no-log', default=False, help="Log-scale the diffraction pattern")
@click.option('-v', '--verbose', count=True)
def run(path: t.Union[str, Path], out: t.Union[str, Path] = '.', log: bool = False, verbose: int = 0):
    import pane
    from .params import SimulationParameters
    from .simulation import Simulation
    from .types import ConfigurationError, DegenerateConfigurationError
    from .utils.io import save_outputs

    _setup_logging(verbose)
    logger = logging.getLogger(__name__)

    try:
        params = SimulationParameters.from_yaml(path)
        sim = Simulation(params)

        logger.info(f"Simulating at {params.kv} kV, {params.shape[0]}x{params.shape[1]} px, aperture {params.aperture} mrad")
        results = sim.run_sync()
    except (pane.ConvertError, ConfigurationError, DegenerateConfigurationError) as e:
        print(f"Simulation failed:\n{e}", file=sys.stderr)
        sys.exit(1)

    save_outputs(results, sim.sampling, out, log=log)


@cli.command('validate')
@click.argument('path', type=click.Path(allow_dash=True), default='-')
@click.option('--json/--no-json', default=False)
def validate(path: t.Union[str, Path], json: bool = False):
    from contextlib import nullcontext
    from .params import SimulationParameters

    try:
        if path == '-':
            file = nullcontext(sys.stdin)
        else:
            file = open(Path(path).expanduser(), 'r')

        with file as file:
            params = SimulationParameters.from_yaml(file)
    except Exception as e:
        print(f"Validation failed:\n{e}", file=sys.stderr)

        if json:
            from json import dump
            dump({'result': 'error', 'error': str(e)}, sys.stdout)
            print()

        sys.exit(1)

    print("Validation of parameters successful!", file=sys.stderr)

    if json:
        from json import dump
        dump({
            'result': 'success',
            'params': params.into_data(),
        }, sys.stdout)
        print()


if __name__ == '__main__':
    cli()
