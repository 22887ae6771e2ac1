from nse_proxy.app.cli import main

raise SystemExit(main())
