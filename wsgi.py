from dotenv import load_dotenv

from fabrilog import create_app

load_dotenv()

app = create_app()
