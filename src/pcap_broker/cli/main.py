"""
pcap-broker CLI - main entry point.
"""
import signal
import sys
from typing import Optional

import click
from loguru import logger

from ..config import BrokerConfig, DEFAULT_LISTEN_ADDRESS
from ..exceptions import BrokerError, ConfigError
from ..logger import setup_logging
from ..server.broker import PcapBroker


def _install_signal_handlers(broker: PcapBroker):
    def handle(signum, frame):
        broker.stop(f"received {signal.Signals(signum).name}", interrupted=True)
        if not broker.started:
            # Still blocked in start(); unwind it so the capture gets killed
            raise KeyboardInterrupt

    signal.signal(signal.SIGINT, handle)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, handle)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option('--cmd', 'command', envvar='PCAP_COMMAND', show_envvar=True,
              help='Command to execute for pcap data '
                   '(eg: tcpdump -i eth0 -n --immediate-mode -s 65535 -U -w -)')
@click.option('--listen', 'listen_address', envvar='LISTEN_ADDRESS', show_envvar=True,
              default=DEFAULT_LISTEN_ADDRESS, show_default=True,
              help='Listen address for PCAP-over-IP')
@click.option('-n', '--no-reverse-lookup', is_flag=True,
              help='Disable reverse lookup of connecting PCAP-over-IP client IP address')
@click.option('--write-timeout', type=float, default=5.0, show_default=True,
              help='Seconds a subscriber may stall a write before it is disconnected')
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.option('--json', 'json_output', is_flag=True, help='Enable JSON logging')
def cli(command: Optional[str], listen_address: str, no_reverse_lookup: bool,
        write_timeout: float, debug: bool, json_output: bool):
    """
    Share one packet capture with many PCAP-over-IP clients.

    Examples:
      pcap-broker --cmd "tcpdump -i eth0 -n --immediate-mode -s 65535 -U -w -"
      PCAP_COMMAND="sshpass ssh host tcpdump -U -w -" pcap-broker --listen :4242
    """
    setup_logging(debug=debug, json_output=json_output)

    config = BrokerConfig(
        command=command or "",
        listen_address=listen_address,
        reverse_lookup=not no_reverse_lookup,
        write_timeout=write_timeout,
    )

    try:
        broker = PcapBroker(config)
    except ConfigError as e:
        raise click.UsageError(str(e))

    _install_signal_handlers(broker)
    try:
        broker.start()
    except BrokerError as e:
        logger.error("{}", e)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("interrupted during startup")
        sys.exit(0)

    exit_code = broker.wait()
    sys.exit(exit_code)


if __name__ == "__main__":
    cli()
