from omachine.cli import run

run()
