from queue_worker.main import run

run()
