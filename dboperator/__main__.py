from dboperator.main import run

run()
