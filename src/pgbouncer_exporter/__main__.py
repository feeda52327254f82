from pgbouncer_exporter.cli import main

main()
