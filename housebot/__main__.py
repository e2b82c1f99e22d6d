from housebot.main import run

run()
