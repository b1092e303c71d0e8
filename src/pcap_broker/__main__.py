from pcap_broker.cli.main import cli

if __name__ == "__main__":
    cli()
