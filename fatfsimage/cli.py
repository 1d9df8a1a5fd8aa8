# Copyright 2014-present PlatformIO <contact@platformio.org>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import click

from .builder import ImageBuilder
from .config import MAX_SOURCE_PATHS, ImageConfig, apply_overrides, read_overrides
from .errors import ImageError
from .log import DEFAULT_LEVEL, LOG_NONE, LOG_VERBOSE, ImageLogger


def _show_help(ctx, param, value):
    # Help is not a successful run
    if not value or ctx.resilient_parsing:
        return
    click.echo(ctx.get_help())
    ctx.exit(1)


@click.command(
    context_settings=dict(help_option_names=[]),
    help="Create and load a FATFS disk image.",
)
@click.option(
    "-h",
    "--help",
    is_flag=True,
    expose_value=False,
    is_eager=True,
    callback=_show_help,
    help="Print this help and exit.",
)
@click.option(
    "-l",
    "--log",
    "log_level",
    type=click.IntRange(LOG_NONE, LOG_VERBOSE, clamp=True),
    default=None,
    metavar="<level>",
    help=f"Log level, 0 (none) to 5 (verbose), default {DEFAULT_LEVEL}.",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Ini file with build option overrides.",
)
@click.option("--profile", default=None, help="Ini profile section to apply.")
@click.option("--strict", is_flag=True, help="Fail if any source entry cannot be copied.")
@click.argument("image", type=click.Path(dir_okay=False))
@click.argument("size_kb", metavar="KB", type=click.IntRange(min=1))
@click.argument("paths", nargs=-1, required=True)
@click.pass_context
def cli(ctx, log_level, config_file, profile, strict, image, size_kb, paths):
    if len(paths) > MAX_SOURCE_PATHS:
        raise click.UsageError(f"At most {MAX_SOURCE_PATHS} paths may be loaded", ctx=ctx)
    if profile and not config_file:
        raise click.UsageError("--profile requires --config", ctx=ctx)

    config = ImageConfig(image=image, size_kb=size_kb, paths=list(paths))
    if config_file:
        try:
            apply_overrides(config, read_overrides(config_file, profile))
        except ValueError as e:
            raise click.BadParameter(str(e), ctx=ctx, param_hint="--config") from e
    if log_level is not None:
        config.log_level = log_level
    config.strict = config.strict or strict

    logger = ImageLogger(config.log_level)
    try:
        ImageBuilder(config, logger).run()
    except ImageError:
        # Already logged by the builder
        ctx.exit(1)


def main(argv=None):
    cli.main(args=argv, prog_name="fatfsimage")
