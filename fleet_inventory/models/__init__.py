# Metadata for create_all is collected from the models imported here
from .vehicle import Vehicle
