from kea_images.cli import main

raise SystemExit(main())
