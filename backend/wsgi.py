# Overview: WSGI entry point; GIFTSITY_SERVICE selects which gateway this process serves.

from giftsity import create_app

app = create_app()

if __name__ == "__main__":
    from giftsity.gateways import get_gateway

    app.run(port=get_gateway(app.config["GIFTSITY_SERVICE"]).default_port, debug=True)
