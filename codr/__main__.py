from codr.cli import run

run()
