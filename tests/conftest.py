import os
import tempfile

# Must be set before bike_configurator.db builds its engine
os.environ.setdefault(
	"DATABASE_URL",
	"sqlite:///" + os.path.join(tempfile.gettempdir(), "bike_configurator_test.db"),
)
