from tourledger import create_app

app = create_app()
