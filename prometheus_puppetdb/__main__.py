from prometheus_puppetdb.cli import app

app(prog_name="prometheus-puppetdb")
